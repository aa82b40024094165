"""
auth/factory.py -- Composition root for the authentication core.

build_gateway() creates the stores, hasher, strategies and session manager,
wires them together by constructor injection, and returns the AuthGateway
facade. The app lifespan calls it once; tests call it with their own engine
and settings.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlalchemy.engine import Engine

from auth.gateway import LOCAL, AuthGateway
from auth.passwords import PasswordHasher
from auth.resolver import IdentityResolver
from auth.sessions import SessionManager
from auth.store import SessionStore, UserStore
from auth.strategies import FacebookStrategy, GoogleStrategy, LocalStrategy, StrategyRegistry
from core.config import Settings

logger = logging.getLogger("authgate.auth")


def build_gateway(
    settings: Settings,
    engine: Engine,
    providers: list[str] | None = None,
    clock: Callable[[], float] = time.time,
) -> AuthGateway:
    """Build the full authentication stack on top of engine.

    providers lists the federated strategies to register. When None, every
    provider with client credentials in settings is registered.
    """
    users = UserStore(engine)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    resolver = IdentityResolver(users)

    if providers is None:
        providers = [name for name in ("google", "facebook") if settings.provider_enabled(name)]

    registry = StrategyRegistry()
    registry.register(LOCAL, LocalStrategy(users, hasher))
    if "google" in providers:
        registry.register("google", GoogleStrategy(resolver, require_verified_email=settings.require_verified_email))
    if "facebook" in providers:
        registry.register("facebook", FacebookStrategy(resolver))
    logger.info("Strategies registered: %s", ", ".join(registry.names()))

    sessions = SessionManager(
        users,
        SessionStore(engine),
        secret_key=settings.secret_key,
        ttl_seconds=settings.session_ttl_seconds,
        clock=clock,
    )
    return AuthGateway(
        users=users,
        hasher=hasher,
        registry=registry,
        sessions=sessions,
        min_password_length=settings.min_password_length,
    )
