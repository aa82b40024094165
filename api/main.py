"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. SessionMiddleware -- signed cookie holding authlib's OAuth state between
                          the provider redirect and the callback
  2. log_requests      -- one log line per request with status and latency

Lifespan builds the database engine and the authentication stack, stores the
gateway on app.state (explicit dependency injection instead of module
globals), runs the expired-session purge task, and disposes the engine on
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthenticationRejected, DuplicateEmail, StoreUnavailable, ValidationError
from auth.factory import build_gateway
from auth.oauth import build_oauth
from auth.store import create_store_engine
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired and revoked sessions every 6 hours.

    Expired sessions are already rejected by resolve(); this only keeps the
    sessions table from growing without bound. CancelledError from
    task.cancel() during shutdown unwinds the coroutine out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        try:
            await run_in_threadpool(app.state.gateway.sessions.purge_expired)
        except StoreUnavailable:
            logger.warning("Session purge skipped: database unavailable")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("AuthGate API starting up")
    settings = get_settings()
    app.state.settings = settings
    app.state.engine = create_store_engine(settings.database_url, pool_timeout=settings.db_pool_timeout)
    app.state.gateway = build_gateway(settings, app.state.engine)
    app.state.oauth = build_oauth(settings)
    logger.info("Auth initialized (providers=%s)", ", ".join(app.state.gateway.registry.names()))
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.engine.dispose()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="Session-based authentication with local passwords and Google/Facebook login.",
    version=VERSION,
    lifespan=lifespan,
)

# authlib keeps the OAuth state value here between the authorization redirect
# and the callback. Distinct cookie name so it never shadows session_token.
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.secret_key,
    session_cookie="oauth_state",
    same_site="lax",
    https_only=_settings.secure_cookies,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Web router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly. Web routes catch gateway errors themselves and redirect,
# so these handlers only see errors that escape a route.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, field: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, field=field)).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(ValidationError)
async def signup_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(400, "validation_error", exc.message, field=exc.field)


@app.exception_handler(DuplicateEmail)
async def duplicate_email_handler(request: Request, exc: DuplicateEmail) -> JSONResponse:
    return _error(409, "duplicate_email", str(exc), field="email")


@app.exception_handler(AuthenticationRejected)
async def rejected_handler(request: Request, exc: AuthenticationRejected) -> JSONResponse:
    resp = _error(401, "bad_credentials", str(exc))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Store unavailable on %s %s", request.method, request.url.path)
    return _error(503, "service_unavailable", "The service is temporarily unavailable.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    components = {"app": "ok", "database": "ok"}
    try:
        await run_in_threadpool(request.app.state.gateway.users.count)
    except StoreUnavailable:
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
