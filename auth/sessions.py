"""
auth/sessions.py -- Server-side session lifecycle.

issue() binds a user id (never the password hash) to a fresh random token;
resolve() maps a presented token back to the current User record; revoke()
makes a token unusable immediately.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The token is
       returned once, put in the cookie, and never persisted. The sessions
       table holds HMAC-SHA256(SECRET_KEY, token) so a leaked database does not
       leak usable sessions. The hash is deterministic, so lookup is O(1).

  Expiry: fixed at issue time (default 7 days), not sliding. resolve()
       checks expires_at itself instead of trusting the cookie max-age.

  Revocation: server-side, so it takes effect on the very next request.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable

from auth.models import IssuedSession, SessionRecord, User
from auth.store import SessionStore, UserStore

logger = logging.getLogger("authgate.auth")

SESSION_COOKIE = "session_token"


class SessionManager:
    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        secret_key: str,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._users = users
        self._sessions = sessions
        self._secret_key = secret_key.encode("utf-8")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _hash_token(self, token: str) -> str:
        return hmac.new(self._secret_key, token.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, user: User) -> IssuedSession:
        """Create a session bound to user.id and return the raw token."""
        token = secrets.token_urlsafe(32)
        now = self._clock()
        record = SessionRecord(
            token_hash=self._hash_token(token),
            user_id=user.id,
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._sessions.insert(record)
        logger.info("Session issued for user id=%d", user.id)
        return IssuedSession(token=token, user_id=user.id, expires_at=record.expires_at)

    def resolve(self, token: str) -> User | None:
        """Return the User bound to token, or None if the token is not valid.

        Invalid means: unknown, revoked, expired, or bound to a user id the
        store no longer finds.
        """
        if not token:
            return None
        record = self._sessions.get(self._hash_token(token))
        if record is None or record.revoked_at is not None:
            return None
        if self._clock() >= record.expires_at:
            return None
        return self._users.find_by_id(record.user_id)

    def revoke(self, token: str) -> None:
        """Make token unusable. Revoking twice, or an unknown token, is not an error."""
        if not token:
            return
        if self._sessions.revoke(self._hash_token(token), self._clock()):
            logger.info("Session revoked")

    def purge_expired(self) -> int:
        """Delete expired and revoked session rows. Returns number of rows removed."""
        removed = self._sessions.purge(self._clock())
        if removed:
            logger.info("Purged %d stale sessions", removed)
        return removed


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, issued: IssuedSession, max_age: int, secure: bool) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": sent on top-level navigations (needed for the OAuth
        callback redirect to land logged in) but not on cross-site POSTs.
    max_age: matches the server-side TTL so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=issued.token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
