"""
auth/errors.py -- Error taxonomy for the authentication core.

Every error the core raises derives from AuthGateError so the HTTP layer can
map them in one place (api/main.py exception handlers, web/routes.py
redirects). Messages are safe to show to users; causes are chained for logs.
"""

from __future__ import annotations


class AuthGateError(Exception):
    """Base authentication error."""

    pass


class ValidationError(AuthGateError):
    """Signup input rejected before any state change."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class DuplicateEmail(AuthGateError):
    """A user with this email already exists."""

    def __init__(self, email: str) -> None:
        super().__init__("A user with that email already exists.")
        self.email = email


class AuthenticationRejected(AuthGateError):
    """Credentials or provider assertion were not accepted.

    reason is for logs only. The user-facing message is always generic so a
    response never reveals whether the email or the password was wrong.
    """

    def __init__(self, reason: str) -> None:
        super().__init__("Invalid email or password.")
        self.reason = reason


class StoreUnavailable(AuthGateError):
    """The database could not be reached or a connection was not acquired in time."""

    pass


class ProviderError(AuthGateError):
    """The identity provider returned a malformed or denied assertion."""

    pass


class UnknownStrategy(AuthGateError):
    """No strategy is registered under the requested name."""

    pass
