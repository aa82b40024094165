"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup     -- create a local account; 201, 400 or 409
  POST /api/v1/auth/login      -- password login; sets session cookie
  POST /api/v1/auth/logout     -- revokes the session and clears the cookie
  GET  /api/v1/auth/me         -- current user info (requires auth)
  GET  /api/v1/auth/providers  -- list enabled OAuth providers (public)

Errors raised by the gateway (ValidationError, DuplicateEmail,
AuthenticationRejected, StoreUnavailable) are mapped to the shared error
envelope by the exception handlers in api/main.py.

Security:
  Login failures return one generic "bad_credentials" error whether the email
  or the password was wrong.
  Cache-Control: no-store on responses that carry a session token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, LoginResponse, OAuthProviderInfo, SignupRequest, UserResponse
from auth.dependencies import get_current_user, get_gateway
from auth.gateway import AuthGateway
from auth.models import User
from auth.oauth import get_enabled_providers
from auth.sessions import SESSION_COOKIE, clear_session_cookie, set_session_cookie

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=UserResponse, status_code=201)
async def signup(body: SignupRequest, gateway: AuthGateway = Depends(get_gateway)) -> UserResponse:
    """Register a local account. Does not log the new user in."""
    user = await gateway.submit_signup(body.name, body.email, body.password, body.confirm_password)
    return _user_to_response(user)


@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    gateway: AuthGateway = request.app.state.gateway
    result = await gateway.submit_local_credentials(body.email, body.password)

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            session_token=result.session.token,
            expires_at=result.session.expires_at,
            user=_user_to_response(result.user),
        ).model_dump(),
    )
    set_session_cookie(
        resp,
        result.session,
        max_age=gateway.sessions.ttl_seconds,
        secure=request.app.state.settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout(request: Request) -> JSONResponse:
    """Revoke the current session (if any) and clear the cookie."""
    gateway: AuthGateway = request.app.state.gateway
    await gateway.logout(request.cookies.get(SESSION_COOKIE))
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return _user_to_response(current_user)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        provider=user.provider,
        created_at=user.created_at or "",
    )
