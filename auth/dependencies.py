"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session cookie ("session_token") is the only credential. Every request
that needs a user resolves it through AuthGateway.resolve_session(), which
checks revocation and expiry server-side.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from web/ or api/. fastapi is allowed because this
module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.gateway import AuthGateway
from auth.models import User
from auth.sessions import SESSION_COOKIE


def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


async def try_get_current_user(request: Request) -> User | None:
    """Resolve the session cookie to a User. Never raises for a bad token."""
    token: str | None = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    return await get_gateway(request).resolve_session(token)


async def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = await try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
