"""
tests/conftest.py -- Shared test fixtures for AuthGate tests.

This module provides:
  - make_settings(): Settings with fast bcrypt and both providers configured
  - memory_engine(): isolated named shared-memory SQLite engine
  - gateway: AuthGateway on a fresh file-backed DB (unit/async tests)
  - app_client: TestClient with a patched lifespan and a mocked OAuth registry

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because the gateway runs store calls in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.factory import build_gateway
from auth.gateway import AuthGateway
from auth.store import create_store_engine
from core.config import Settings

# Mount the web router once; asgi.py does this in production.
if not any(getattr(r, "path", None) == "/homepage" for r in app.router.routes):
    from web.routes import router as web_router

    app.include_router(web_router, tags=["Web"])


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    """Settings for tests: 4 bcrypt rounds (the minimum) keep hashing fast."""
    values = dict(
        debug=True,
        secret_key="t" * 48,
        bcrypt_rounds=4,
        google_client_id="google-test-id",
        google_client_secret="google-test-secret",
        facebook_client_id="facebook-test-id",
        facebook_client_secret="facebook-test-secret",
    )
    values.update(overrides)
    return Settings(**values)


def memory_engine() -> Engine:
    """Create an isolated named shared-memory SQLite engine with the schema in place."""
    name = f"test_authgate_{uuid.uuid4().hex}"
    return create_store_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


class FakeClock:
    """Controllable replacement for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures -- core
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def file_engine(tmp_path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine; real locking, so concurrent writers behave like production."""
    engine = create_store_engine(f"sqlite:///{tmp_path / 'authgate_test.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def gateway(file_engine: Engine, clock: FakeClock) -> AuthGateway:
    return build_gateway(make_settings(), file_engine, providers=["google", "facebook"], clock=clock)


# ---------------------------------------------------------------------------
# Fixtures -- HTTP
# ---------------------------------------------------------------------------


@dataclass
class AppHarness:
    client: TestClient
    gateway: AuthGateway
    google: MagicMock
    facebook: MagicMock
    clock: FakeClock


def _oauth_client(name: str) -> MagicMock:
    client = MagicMock(name=f"{name}_client")
    client.authorize_redirect = AsyncMock(
        return_value=RedirectResponse(f"https://{name}.example/authorize?state=abc", status_code=302)
    )
    client.authorize_access_token = AsyncMock(return_value={"access_token": "provider-token"})
    profile = MagicMock()
    profile.raise_for_status.return_value = None
    profile.json.return_value = {}
    client.get = AsyncMock(return_value=profile)
    return client


def _patch_lifespan(settings: Settings, engine: Engine, gateway: AuthGateway, oauth: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test gateway into app.state and substitutes a mocked OAuth
    registry so no request ever reaches Google or Facebook.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.engine = engine
        app.state.gateway = gateway
        app.state.oauth = oauth
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def app_client(clock: FakeClock) -> Generator[AppHarness, None, None]:
    """Yield an AppHarness around a TestClient for the full ASGI app.

    follow_redirects=False is essential: tests assert on redirect locations
    and on the Set-Cookie headers of the redirect responses themselves.
    """
    settings = make_settings()
    engine = memory_engine()
    gw = build_gateway(settings, engine, providers=["google", "facebook"], clock=clock)

    google = _oauth_client("google")
    facebook = _oauth_client("facebook")
    oauth = MagicMock(name="oauth_registry")
    oauth.create_client.side_effect = {"google": google, "facebook": facebook}.get

    app.router.lifespan_context = _patch_lifespan(settings, engine, gw, oauth)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield AppHarness(client=client, gateway=gw, google=google, facebook=facebook, clock=clock)

    engine.dispose()
