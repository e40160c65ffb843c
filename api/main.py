"""
api/main.py -- FastAPI application entry point for tubeauth.

Run with:  uvicorn api.main:app --reload

Middleware: CORSMiddleware adds CORS headers for the configured browser
origins. Rate limits are enforced by the @limiter.limit decorators on the
routes themselves; app.state.limiter only exposes the shared limiter.

Lifespan builds the collaborators exactly once (store, token signer,
notifier, audit log, service) and hangs them on app.state; shutdown disposes
the store's engine. Nothing is created at import time, so tests can swap the
lifespan for one that wires in-memory stores.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.audit import AuditLog
from auth.errors import (
    AccountDisabled,
    AuthError,
    Conflict,
    ExpiredOrUsedToken,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidResetCode,
    ValidationError,
)
from auth.notifier import build_notifier
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenSigner
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tubeauth.api")

_settings = get_settings()

# Status code for each expected failure. The service never picks status codes.
_AUTH_ERROR_STATUS: dict[type[AuthError], int] = {
    ValidationError: 400,
    InvalidResetCode: 400,
    ExpiredOrUsedToken: 400,
    InvalidCredentials: 401,
    InvalidOrExpiredToken: 401,
    AccountDisabled: 403,
    Forbidden: 403,
    Conflict: 409,
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Construct the store and service once; dispose them on shutdown."""
    logger.info("tubeauth API starting up")
    store = AuthStore(_settings.database_url)
    signer = TokenSigner.from_settings(_settings)
    notifier = build_notifier(_settings)
    app.state.auth_store = store
    app.state.token_signer = signer
    app.state.auth_service = AuthService(store, signer, notifier, AuditLog(store), _settings)
    logger.info("Auth initialized (notifier=%s)", type(notifier).__name__)

    yield

    store.close()
    logger.info("tubeauth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tubeauth API",
    description="Registration, login, refresh-token rotation, logout and password reset.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a typed service failure to its status code."""
    status_code = _AUTH_ERROR_STATUS.get(type(exc), 400)
    response = _error_response(status_code, exc.code, exc.message)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After header when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTPExceptions raised by routes and dependencies.

    When detail is already a structured dict use it directly as the error
    field; str(dict) would produce a Python repr, not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    response = _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures, store outages included.

    The traceback goes to the log only. The client receives a generic
    message so store internals never leak into a response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database answers."""
    components = {"app": "ok"}
    try:
        components["database"] = "ok" if request.app.state.auth_store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
