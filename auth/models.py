"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores, strategies and the gateway do the work.

Layer rule: no imports from api/, web/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

# Sentinel credentials stored in users.password for accounts that never set a
# local password. They are not bcrypt hashes, so a local login against such an
# account always fails verification.
GOOGLE_MARKER = "google-oauth"
FACEBOOK_MARKER = "facebook-oauth"

_MARKER_PROVIDERS = {GOOGLE_MARKER: "google", FACEBOOK_MARKER: "facebook"}


@dataclass(frozen=True)
class User:
    """A persisted user identity.

    email is the unique key shared by every strategy. It is matched exactly
    (case-sensitive, no trimming).

    password holds either a bcrypt hash (local signup) or one of the provider
    markers above (first login through Google or Facebook).
    """

    id: int
    name: str
    email: str
    password: str
    created_at: str | None = None

    @property
    def provider(self) -> str:
        """Return "local" for password accounts, else the provider that created the record."""
        return _MARKER_PROVIDERS.get(self.password, "local")


@dataclass(frozen=True)
class SessionRecord:
    """Server-side session row. The raw token is never stored, only its HMAC."""

    token_hash: str
    user_id: int
    issued_at: float
    expires_at: float
    revoked_at: float | None = None


@dataclass(frozen=True)
class IssuedSession:
    """Returned once by SessionManager.issue(). token goes into the cookie."""

    token: str
    user_id: int
    expires_at: float


# ---------------------------------------------------------------------------
# Strategy evidence and outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalEvidence:
    email: str
    password: str


@dataclass(frozen=True)
class Success:
    identity: User


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Error:
    cause: Exception


Outcome = Union[Success, Rejected, Error]


# ---------------------------------------------------------------------------
# Gateway state machine
# ---------------------------------------------------------------------------


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    SESSION_ACTIVE = "session_active"


@dataclass(frozen=True)
class AuthResult:
    """Final state of a successful authentication attempt."""

    state: AuthState
    user: User
    session: IssuedSession
    strategy: str
