"""
auth/strategies.py -- Pluggable authentication strategies and their registry.

Each strategy turns provider-specific evidence into an Outcome:
  Success(identity)   -- the evidence identifies a user
  Rejected(reason)    -- the evidence was checked and did not match
  Error(cause)        -- the check itself could not be completed

Strategies are synchronous: they do blocking store lookups and bcrypt work.
The gateway runs them in the thread pool so the event loop stays free.

Provider email policy:
  google    -- the "email" claim is required; no fallback.
  facebook  -- Facebook may withhold email. The synthetic address
               fb_<facebook id>@facebook.user stands in, so the same Facebook
               account always maps to the same user and can never collide with
               a deliverable address.

Security caveat: provider-asserted emails are trusted without a separate
confirmation step. With REQUIRE_VERIFIED_EMAIL=true, Google assertions whose
email_verified claim is false are rejected.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from auth.errors import ProviderError, StoreUnavailable, UnknownStrategy
from auth.models import FACEBOOK_MARKER, GOOGLE_MARKER, Error, LocalEvidence, Outcome, Rejected, Success
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.store import UserStore

logger = logging.getLogger("authgate.auth")


class Strategy(ABC):
    """A way of turning evidence into an authentication Outcome."""

    @abstractmethod
    def authenticate(self, evidence: Any) -> Outcome:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Local (email + password)
# ---------------------------------------------------------------------------


class LocalStrategy(Strategy):
    def __init__(self, store: UserStore, hasher: PasswordHasher) -> None:
        self._store = store
        self._hasher = hasher

    def authenticate(self, evidence: LocalEvidence) -> Outcome:
        """Check an email/password pair against the stored bcrypt hash.

        An unknown email still pays for one bcrypt verification so response
        time does not reveal which emails are registered.
        """
        logger.info("Login attempt for email: %s", evidence.email)
        try:
            user = self._store.find_by_email(evidence.email)
        except StoreUnavailable as exc:
            return Error(exc)
        if user is None:
            self._hasher.dummy_verify(evidence.password)
            return Rejected("user not found")
        if not self._hasher.verify(evidence.password, user.password):
            return Rejected("incorrect password")
        return Success(user)


# ---------------------------------------------------------------------------
# Federated (Google, Facebook, ...)
# ---------------------------------------------------------------------------


class FederatedStrategy(Strategy):
    """Base for provider strategies: extract (name, email) then find-or-create.

    Subclasses set marker and implement claims().
    """

    marker: str = ""

    def __init__(self, resolver: IdentityResolver) -> None:
        self._resolver = resolver

    @abstractmethod
    def claims(self, assertion: Mapping[str, Any]) -> tuple[str, str]:
        """Return (display name, email) from the assertion or raise ProviderError."""
        raise NotImplementedError

    def authenticate(self, evidence: Mapping[str, Any]) -> Outcome:
        try:
            name, email = self.claims(evidence)
        except ProviderError as exc:
            return Error(exc)
        try:
            user = self._resolver.resolve(name, email, self.marker)
        except StoreUnavailable as exc:
            return Error(exc)
        return Success(user)


class GoogleStrategy(FederatedStrategy):
    marker = GOOGLE_MARKER

    def __init__(self, resolver: IdentityResolver, require_verified_email: bool = False) -> None:
        super().__init__(resolver)
        self.require_verified_email = require_verified_email

    def claims(self, assertion: Mapping[str, Any]) -> tuple[str, str]:
        if not isinstance(assertion, Mapping):
            raise ProviderError("google: assertion is not a claim mapping")
        email = assertion.get("email")
        if not email or not isinstance(email, str):
            raise ProviderError("google: no email claim in assertion")
        if self.require_verified_email and not assertion.get("email_verified", False):
            raise ProviderError("google: email is not verified")
        name = assertion.get("name") or email
        return str(name), email


class FacebookStrategy(FederatedStrategy):
    marker = FACEBOOK_MARKER

    def claims(self, assertion: Mapping[str, Any]) -> tuple[str, str]:
        if not isinstance(assertion, Mapping):
            raise ProviderError("facebook: assertion is not a claim mapping")
        facebook_id = assertion.get("id")
        if not facebook_id:
            raise ProviderError("facebook: no id in profile response")
        email = assertion.get("email") or f"fb_{facebook_id}@facebook.user"
        name = assertion.get("name") or email
        return str(name), str(email)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class StrategyRegistry:
    """Mapping from strategy name ("local", "google", ...) to implementation."""

    def __init__(self) -> None:
        self._strategies: dict[str, Strategy] = {}

    def register(self, name: str, strategy: Strategy) -> None:
        self._strategies[name] = strategy

    def get(self, name: str) -> Strategy | None:
        return self._strategies.get(name)

    def names(self) -> list[str]:
        return list(self._strategies)

    def authenticate(self, name: str, evidence: Any) -> Outcome:
        strategy = self._strategies.get(name)
        if strategy is None:
            return Error(UnknownStrategy("no such strategy"))
        return strategy.authenticate(evidence)
