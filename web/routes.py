"""
web/routes.py -- Browser-facing form and redirect routes.

These routes mirror the classic server-rendered flow: form posts, redirects
and a session cookie. Page rendering is out of scope, so the GET pages
return small JSON bodies describing what a template would show.

Route registration order: /auth/{provider}/callback is registered before
/auth/{provider} for readability; the paths do not overlap.

Routes:
  GET  /                          -- 302 /homepage when logged in, else landing body
  GET  /homepage                  -- current user (302 /login when logged out)
  GET  /login                     -- login page data (whitelisted error, providers)
  GET  /signup                    -- signup page data (providers)
  POST /login                     -- email/password form login
  POST /signup                    -- create local account, 302 /login
  GET  /auth/{provider}/callback  -- provider callback; session on success
  GET  /auth/{provider}           -- redirect to provider authorization page
  GET  /logout, POST /logout      -- revoke session, clear cookie, 302 /
"""

import logging
from typing import Optional

import httpx
from authlib.integrations.starlette_client import OAuthError
from authlib.jose.errors import JoseError
from fastapi import APIRouter, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import try_get_current_user
from auth.errors import AuthenticationRejected, DuplicateEmail, ProviderError, StoreUnavailable, ValidationError
from auth.gateway import LOCAL, AuthGateway, AuthResult
from auth.oauth import callback_url, fetch_assertion, get_enabled_providers
from auth.sessions import SESSION_COOKIE, clear_session_cookie, set_session_cookie

logger = logging.getLogger("authgate.web")

router = APIRouter()

# Failures talking to a provider: state mismatch or error responses (OAuthError),
# unreachable token/discovery endpoints (httpx), unparseable id_token (JoseError).
_PROVIDER_FAILURES = (OAuthError, JoseError, httpx.HTTPError)

# Whitelist mapping for ?error= query params on /login.
# The raw query param is NEVER echoed back -- only the message from this dict.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "oauth_failed": "Sign-in with that provider failed. Please try again.",
    "unavailable": "The service is temporarily unavailable. Please try again later.",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def _login_redirect(error: Optional[str] = None) -> RedirectResponse:
    url = f"/login?error={error}" if error else "/login"
    return RedirectResponse(url, status_code=302)


def _session_redirect(request: Request, result: AuthResult) -> RedirectResponse:
    """302 to /homepage carrying the freshly issued session cookie."""
    resp = RedirectResponse("/homepage", status_code=302)
    set_session_cookie(
        resp,
        result.session,
        max_age=_gateway(request).sessions.ttl_seconds,
        secure=request.app.state.settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _federated_enabled(request: Request, provider: str) -> bool:
    """A provider is usable only when it has both an OAuth client and a strategy.

    "local" is a strategy but not a provider, so it never matches here.
    """
    if provider == LOCAL or _gateway(request).registry.get(provider) is None:
        return False
    return request.app.state.oauth.create_client(provider) is not None


def _form_error(status_code: int, field: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"field": field, "message": message}})


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/")
async def index(request: Request):
    """Send logged-in visitors to the homepage; everyone else sees the landing body."""
    if await try_get_current_user(request) is not None:
        return RedirectResponse("/homepage", status_code=302)
    return JSONResponse({"authenticated": False, "login": "/login", "signup": "/signup"})


@router.get("/homepage")
async def homepage(request: Request):
    user = await try_get_current_user(request)
    if user is None:
        return _login_redirect()
    return JSONResponse({"user": {"id": user.id, "name": user.name, "email": user.email, "provider": user.provider}})


@router.get("/login")
async def login_page(request: Request) -> JSONResponse:
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return JSONResponse({"error": error_msg, "providers": get_enabled_providers(request.app.state.settings)})


@router.get("/signup")
async def signup_page(request: Request) -> JSONResponse:
    return JSONResponse({"providers": get_enabled_providers(request.app.state.settings)})


# ---------------------------------------------------------------------------
# Local login and signup
# ---------------------------------------------------------------------------


@router.post("/login")
async def login_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
) -> RedirectResponse:
    """Handle the email/password login form."""
    try:
        result = await _gateway(request).submit_local_credentials(email, password)
    except AuthenticationRejected:
        return _login_redirect("bad_credentials")
    except StoreUnavailable:
        return _login_redirect("unavailable")
    return _session_redirect(request, result)


@router.post("/signup")
async def signup_post(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: Optional[str] = Form(None),
):
    """Create a local account and send the user to the login page.

    Validation and duplicate errors come back as {"error": {field, message}}
    so the form can be shown again with the message next to the right field.
    """
    try:
        await _gateway(request).submit_signup(name, email, password, confirm_password)
    except ValidationError as exc:
        return _form_error(400, exc.field, exc.message)
    except DuplicateEmail as exc:
        return _form_error(409, "email", str(exc))
    except StoreUnavailable:
        return _form_error(503, "", _ERROR_MESSAGES["unavailable"])
    return RedirectResponse("/login", status_code=302)


# ---------------------------------------------------------------------------
# Federated login
# ---------------------------------------------------------------------------


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and open a session.

    Flow:
      1. Exchange the authorization code for a token (authlib checks state).
      2. Fetch the provider's identity assertion.
      3. Hand the assertion to the gateway: find-or-create, then issue session.
    """
    if not _federated_enabled(request, provider):
        return _login_redirect("oauth_failed")

    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except _PROVIDER_FAILURES:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _login_redirect("oauth_failed")

    try:
        assertion = await fetch_assertion(client, provider, token)
    except ProviderError as exc:
        logger.warning("OAuth login rejected for %r: %s", provider, exc)
        return _login_redirect("oauth_failed")

    try:
        result = await _gateway(request).complete_federated(provider, assertion)
    except AuthenticationRejected:
        return _login_redirect("oauth_failed")
    except StoreUnavailable:
        return _login_redirect("unavailable")
    return _session_redirect(request, result)


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the configured providers first so a
    crafted name cannot reach authlib.
    """
    if not _federated_enabled(request, provider):
        return _login_redirect("oauth_failed")

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = callback_url(request.app.state.settings, provider) or str(
        request.url_for("oauth_callback", provider=provider)
    )
    try:
        return await client.authorize_redirect(request, redirect_uri)
    except _PROVIDER_FAILURES:
        logger.exception("OAuth authorization redirect failed for provider %r", provider)
        return _login_redirect("oauth_failed")


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


@router.api_route("/logout", methods=["GET", "POST"])
async def logout(request: Request) -> RedirectResponse:
    """Revoke the session server-side, clear the cookie and go back to /."""
    await _gateway(request).logout(request.cookies.get(SESSION_COOKIE))
    resp = RedirectResponse("/", status_code=302)
    clear_session_cookie(resp)
    return resp
