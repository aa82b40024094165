"""
auth/gateway.py -- Orchestrates strategies and sessions for one auth attempt.

State machine per attempt:
  UNAUTHENTICATED --submit evidence--> PENDING
  PENDING --Success--> AUTHENTICATED --issue session--> SESSION_ACTIVE
  PENDING --Rejected/Error--> UNAUTHENTICATED (no session issued)
  SESSION_ACTIVE --logout--> UNAUTHENTICATED (session revoked)

Later requests re-enter SESSION_ACTIVE through resolve_session(); an invalid
or expired token is simply UNAUTHENTICATED.

All collaborators are passed in at construction (wired in the app lifespan).
Every blocking call (store I/O, bcrypt) runs via run_in_threadpool so a slow
hash or lookup never stalls unrelated requests.

Error mapping:
  Rejected                  -> AuthenticationRejected(reason)
  Error(ProviderError)      -> AuthenticationRejected (provider problem, not ours)
  Error(UnknownStrategy)    -> AuthenticationRejected
  Error(StoreUnavailable)   -> StoreUnavailable re-raised for a generic 503
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from auth.errors import AuthenticationRejected, DuplicateEmail, StoreUnavailable, ValidationError
from auth.models import AuthResult, AuthState, Error, LocalEvidence, Outcome, Rejected, Success, User
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.strategies import StrategyRegistry

logger = logging.getLogger("authgate.auth")

LOCAL = "local"


class AuthGateway:
    def __init__(
        self,
        users: UserStore,
        hasher: PasswordHasher,
        registry: StrategyRegistry,
        sessions: SessionManager,
        min_password_length: int = 8,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.registry = registry
        self.sessions = sessions
        self.min_password_length = min_password_length

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def submit_local_credentials(self, email: str, password: str) -> AuthResult:
        """Authenticate an email/password pair and open a session.

        Raises AuthenticationRejected on bad credentials, StoreUnavailable if
        the database cannot be reached.
        """
        return await self._attempt(LOCAL, LocalEvidence(email=email, password=password))

    async def complete_federated(self, provider: str, assertion: dict[str, Any]) -> AuthResult:
        """Finish a provider login from its identity assertion and open a session.

        "local" is a strategy but not a provider; it only accepts LocalEvidence.
        """
        if provider == LOCAL:
            logger.info("Authentication rejected via %s: not a federated provider", provider)
            raise AuthenticationRejected("no such strategy")
        return await self._attempt(provider, assertion)

    async def _attempt(self, strategy: str, evidence: Any) -> AuthResult:
        logger.debug("%s -> %s via %s", AuthState.UNAUTHENTICATED.value, AuthState.PENDING.value, strategy)
        outcome: Outcome = await run_in_threadpool(self.registry.authenticate, strategy, evidence)

        if isinstance(outcome, Success):
            user = outcome.identity
            logger.debug("%s -> %s user id=%d", AuthState.PENDING.value, AuthState.AUTHENTICATED.value, user.id)
            issued = await run_in_threadpool(self.sessions.issue, user)
            logger.info("Authenticated user id=%d via %s", user.id, strategy)
            return AuthResult(state=AuthState.SESSION_ACTIVE, user=user, session=issued, strategy=strategy)

        if isinstance(outcome, Rejected):
            logger.info("Authentication rejected via %s: %s", strategy, outcome.reason)
            raise AuthenticationRejected(outcome.reason)

        if isinstance(outcome, Error):
            if isinstance(outcome.cause, StoreUnavailable):
                raise outcome.cause
            logger.warning("Authentication error via %s: %s", strategy, outcome.cause)
            raise AuthenticationRejected(str(outcome.cause)) from outcome.cause

        raise TypeError(f"Unexpected outcome {outcome!r}")

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    async def submit_signup(
        self,
        name: str,
        email: str,
        password: str,
        confirm_password: str | None = None,
    ) -> User:
        """Register a local account.

        Raises ValidationError (nothing stored), DuplicateEmail (nothing
        stored), or StoreUnavailable. Does not open a session; the caller
        sends the user to the login page to sign in.
        """
        self._validate_signup(name, email, password, confirm_password)

        # Fast path only. The UNIQUE constraint in create() is what actually
        # guarantees a single record per email.
        if await run_in_threadpool(self.users.find_by_email, email) is not None:
            logger.info("Signup rejected: email already registered")
            raise DuplicateEmail(email)

        hashed = await run_in_threadpool(self.hasher.hash, password)
        try:
            user = await run_in_threadpool(self.users.create, name, email, hashed)
        except DuplicateEmail:
            logger.info("Signup lost a concurrent race for the same email")
            raise
        logger.info("Signup complete for user id=%d", user.id)
        return user

    def _validate_signup(self, name: str, email: str, password: str, confirm_password: str | None) -> None:
        if not name or not name.strip():
            raise ValidationError("name", "Name is required.")
        if not email:
            raise ValidationError("email", "Email is required.")
        if "@" not in email:
            raise ValidationError("email", "Email address is not valid.")
        if not password:
            raise ValidationError("password", "Password is required.")
        if len(password) < self.min_password_length:
            raise ValidationError(
                "password",
                f"Password must be at least {self.min_password_length} characters.",
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError("password", f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        if confirm_password is not None and confirm_password != password:
            raise ValidationError("confirm_password", "Passwords do not match.")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def resolve_session(self, token: str | None) -> User | None:
        """Return the user for a presented session token, or None if it is not valid."""
        if not token:
            return None
        return await run_in_threadpool(self.sessions.resolve, token)

    async def logout(self, token: str | None) -> None:
        """Revoke the session. Safe to call with no token or an already-revoked one."""
        if not token:
            return
        await run_in_threadpool(self.sessions.revoke, token)
        logger.debug("%s -> %s", AuthState.SESSION_ACTIVE.value, AuthState.UNAUTHENTICATED.value)
