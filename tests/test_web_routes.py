"""
tests/test_web_routes.py -- Integration tests for the browser form and redirect flow.

Every request goes through the real ASGI stack (follow_redirects=False) so
the tests can assert on Location and Set-Cookie headers of the redirects.
The authlib registry is a MagicMock: no request ever leaves the process.

Coverage:
  - form signup -> 302 /login; validation and duplicate errors keep the field
  - form login -> 302 /homepage with session cookie; bad credentials -> ?error=
  - /login only ever shows whitelisted error messages
  - /auth/{provider} redirects to the provider; unknown providers bounce to /login
  - provider callback finds-or-creates the account and opens a session
  - logout revokes server-side, clears the cookie and lands on /
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
from authlib.integrations.starlette_client import OAuthError
from authlib.jose.errors import DecodeError

from auth.models import FACEBOOK_MARKER, GOOGLE_MARKER
from auth.sessions import SESSION_COOKIE

SEVEN_DAYS = 7 * 24 * 60 * 60


def _signup(client, email: str = "ada@example.com", password: str = "long-enough-pw", **extra):
    data = {"name": "Ada", "email": email, "password": password}
    data.update(extra)
    return client.post("/signup", data=data)


def _login(client, email: str = "ada@example.com", password: str = "long-enough-pw"):
    return client.post("/login", data={"email": email, "password": password})


def _set_cookie_headers(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class TestSignupForm:
    def test_signup_redirects_to_login(self, app_client) -> None:
        resp = _signup(app_client.client, confirm_password="long-enough-pw")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert app_client.gateway.users.count() == 1

    def test_signup_does_not_log_in(self, app_client) -> None:
        resp = _signup(app_client.client)
        assert SESSION_COOKIE not in resp.cookies
        assert app_client.client.get("/homepage").headers["location"] == "/login"

    def test_short_password_reports_field(self, app_client) -> None:
        resp = _signup(app_client.client, password="short")
        assert resp.status_code == 400
        assert resp.json()["error"]["field"] == "password"
        assert app_client.gateway.users.count() == 0

    def test_mismatched_confirmation(self, app_client) -> None:
        resp = _signup(app_client.client, confirm_password="something-else")
        assert resp.status_code == 400
        assert resp.json()["error"]["field"] == "confirm_password"

    def test_duplicate_email_is_conflict(self, app_client) -> None:
        _signup(app_client.client)
        resp = _signup(app_client.client, password="another-password")
        assert resp.status_code == 409
        assert resp.json()["error"] == {"field": "email", "message": "A user with that email already exists."}
        assert app_client.gateway.users.count() == 1


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLoginForm:
    def test_login_sets_cookie_and_redirects(self, app_client) -> None:
        _signup(app_client.client)
        resp = _login(app_client.client)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/homepage"
        assert resp.headers["cache-control"] == "no-store"

        cookie = next(h for h in _set_cookie_headers(resp) if h.startswith(f"{SESSION_COOKIE}="))
        assert "httponly" in cookie.lower()
        assert "samesite=lax" in cookie.lower()
        assert f"max-age={SEVEN_DAYS}" in cookie.lower()

    def test_homepage_shows_current_user(self, app_client) -> None:
        _signup(app_client.client)
        _login(app_client.client)
        resp = app_client.client.get("/homepage")
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["email"] == "ada@example.com"
        assert user["provider"] == "local"
        assert "password" not in user

    def test_index_redirects_when_logged_in(self, app_client) -> None:
        assert app_client.client.get("/").json()["authenticated"] is False
        _signup(app_client.client)
        _login(app_client.client)
        resp = app_client.client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/homepage"

    def test_wrong_password_redirects_with_error(self, app_client) -> None:
        _signup(app_client.client)
        resp = _login(app_client.client, password="wrong-password")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=bad_credentials"
        assert SESSION_COOKIE not in resp.cookies

    def test_unknown_email_looks_the_same(self, app_client) -> None:
        resp = _login(app_client.client, email="ghost@example.com")
        assert resp.headers["location"] == "/login?error=bad_credentials"

    def test_login_page_whitelists_errors(self, app_client) -> None:
        known = app_client.client.get("/login?error=bad_credentials").json()
        assert known["error"] == "Invalid email or password."

        crafted = app_client.client.get("/login?error=<script>alert(1)</script>").json()
        assert crafted["error"] is None

    def test_login_page_lists_providers(self, app_client) -> None:
        providers = app_client.client.get("/login").json()["providers"]
        assert [p["name"] for p in providers] == ["google", "facebook"]

    def test_session_expires_after_ttl(self, app_client) -> None:
        _signup(app_client.client)
        _login(app_client.client)
        app_client.clock.advance(SEVEN_DAYS)
        resp = app_client.client.get("/homepage")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"


# ---------------------------------------------------------------------------
# Federated login
# ---------------------------------------------------------------------------


class TestFederatedLogin:
    def test_redirect_to_provider(self, app_client) -> None:
        resp = app_client.client.get("/auth/google")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("https://google.example/authorize")

        _request, redirect_uri = app_client.google.authorize_redirect.call_args.args
        assert redirect_uri.endswith("/auth/google/callback")

    def test_unknown_provider_bounces_to_login(self, app_client) -> None:
        for path in ("/auth/myspace", "/auth/local", "/auth/myspace/callback"):
            resp = app_client.client.get(path)
            assert resp.status_code == 302
            assert resp.headers["location"] == "/login?error=oauth_failed"

    def test_google_callback_creates_account(self, app_client) -> None:
        app_client.google.authorize_access_token = AsyncMock(
            return_value={"access_token": "t", "userinfo": {"name": "Gina", "email": "gina@example.com"}}
        )
        resp = app_client.client.get("/auth/google/callback?code=abc&state=abc")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/homepage"
        assert SESSION_COOKIE in resp.cookies

        stored = app_client.gateway.users.find_by_email("gina@example.com")
        assert stored.password == GOOGLE_MARKER
        assert app_client.client.get("/homepage").json()["user"]["provider"] == "google"

    def test_google_callback_reuses_local_account(self, app_client) -> None:
        _signup(app_client.client)
        app_client.google.authorize_access_token = AsyncMock(
            return_value={"access_token": "t", "userinfo": {"name": "Ada G", "email": "ada@example.com"}}
        )
        resp = app_client.client.get("/auth/google/callback?code=abc&state=abc")
        assert resp.headers["location"] == "/homepage"
        assert app_client.gateway.users.count() == 1
        assert app_client.client.get("/homepage").json()["user"]["provider"] == "local"

    def test_facebook_callback_uses_graph_profile(self, app_client) -> None:
        app_client.facebook.get.return_value.json.return_value = {"id": "42", "name": "Finn"}
        resp = app_client.client.get("/auth/facebook/callback?code=abc&state=abc")
        assert resp.headers["location"] == "/homepage"

        stored = app_client.gateway.users.find_by_email("fb_42@facebook.user")
        assert stored.password == FACEBOOK_MARKER
        app_client.facebook.get.assert_awaited_once()

    def test_token_exchange_failure(self, app_client) -> None:
        app_client.google.authorize_access_token = AsyncMock(side_effect=OAuthError(error="mismatching_state"))
        resp = app_client.client.get("/auth/google/callback?code=abc&state=forged")
        assert resp.headers["location"] == "/login?error=oauth_failed"
        assert app_client.gateway.users.count() == 0

    def test_token_endpoint_unreachable(self, app_client) -> None:
        app_client.google.authorize_access_token = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        resp = app_client.client.get("/auth/google/callback?code=abc&state=abc")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=oauth_failed"

    def test_unparseable_id_token(self, app_client) -> None:
        app_client.google.authorize_access_token = AsyncMock(side_effect=DecodeError("bad id_token"))
        resp = app_client.client.get("/auth/google/callback?code=abc&state=abc")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=oauth_failed"

    def test_discovery_unreachable_on_redirect(self, app_client) -> None:
        app_client.google.authorize_redirect = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        resp = app_client.client.get("/auth/google")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=oauth_failed"

    def test_facebook_profile_error(self, app_client) -> None:
        request = httpx.Request("GET", "https://graph.facebook.com/v19.0/me")
        app_client.facebook.get.return_value.raise_for_status.side_effect = httpx.HTTPStatusError(
            "400 Bad Request", request=request, response=httpx.Response(400, request=request)
        )
        resp = app_client.client.get("/auth/facebook/callback?code=abc&state=abc")
        assert resp.headers["location"] == "/login?error=oauth_failed"
        assert app_client.gateway.users.count() == 0

    def test_facebook_non_object_profile(self, app_client) -> None:
        app_client.facebook.get.return_value.json.return_value = ["not", "a", "profile"]
        resp = app_client.client.get("/auth/facebook/callback?code=abc&state=abc")
        assert resp.headers["location"] == "/login?error=oauth_failed"
        assert app_client.gateway.users.count() == 0

    def test_missing_userinfo_fails(self, app_client) -> None:
        resp = app_client.client.get("/auth/google/callback?code=abc&state=abc")
        assert resp.headers["location"] == "/login?error=oauth_failed"
        assert SESSION_COOKIE not in resp.cookies


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_revokes_and_clears_cookie(self, app_client) -> None:
        client = app_client.client
        _signup(client)
        token = _login(client).cookies[SESSION_COOKIE]

        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert any(h.startswith(f"{SESSION_COOKIE}=") for h in _set_cookie_headers(resp))

        # Replaying the old token must not work: revocation is server-side.
        client.cookies.set(SESSION_COOKIE, token)
        assert client.get("/homepage").headers["location"] == "/login"

    def test_logout_without_session(self, app_client) -> None:
        resp = app_client.client.get("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
