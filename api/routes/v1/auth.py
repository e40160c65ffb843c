"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; returns a login bundle (201)
  POST /api/v1/auth/login            -- username-or-email + password; returns a login bundle
  POST /api/v1/auth/refresh          -- rotate a refresh token; returns a new bundle
  POST /api/v1/auth/logout           -- revoke one of the caller's sessions (requires auth)
  POST /api/v1/auth/forgot-password  -- request a reset code (generic answer)
  POST /api/v1/auth/reset-password   -- redeem a reset code; returns a login bundle
  GET  /api/v1/auth/me               -- claims of the current access token (requires auth)

Handlers are plain `def`: bcrypt is CPU-bound, so FastAPI runs them in its
threadpool instead of blocking the event loop.

AuthError subclasses raised by the service are mapped to status codes by
the exception handler in api/main.py; handlers here never catch them.

Security:
  POST /login and POST /forgot-password are rate-limited per IP. @router.post
  sits above @limiter.limit so the router registers the wrapped function
  and every call passes through slowapi's check.
  Cache-Control: no-store on every response that carries tokens.
  Logout passes the caller's user id to the service; the service refuses to
  revoke a session owned by somebody else.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.limiter import limiter
from api.models import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import get_current_claims
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - register, login, refresh, forgot-password, reset-password: public
# - logout, me: require a valid Bearer access token (get_current_claims)
router = APIRouter()


def _client_context(request: Request) -> tuple[str, str]:
    ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("User-Agent", "")
    return ip, user_agent


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> LoginResponse:
    ip, user_agent = _client_context(request)
    bundle = _service(request).register(
        body.first_name,
        body.last_name,
        body.username,
        body.email,
        body.password,
        ip,
        user_agent,
    )
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with username-or-email and password.

    Unknown identifier and wrong password both come back as 401
    invalid_credentials so the response does not reveal which accounts exist.
    """
    ip, user_agent = _client_context(request)
    bundle = _service(request).login(body.identifier, body.password, ip, user_agent)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> LoginResponse:
    """Rotate a refresh token. The presented token is dead after this call."""
    ip, user_agent = _client_context(request)
    bundle = _service(request).refresh(body.refresh_token, ip, user_agent)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse, response_model_exclude_none=True)
@limiter.limit(_settings.forgot_password_rate_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> ForgotPasswordResponse:
    """Start the reset handshake. The answer is the same whether or not the account exists.

    reset_code is only present when ECHO_RESET_CODE is enabled (non-production).
    """
    ip, user_agent = _client_context(request)
    result = _service(request).forgot_password(body.identifier, ip, user_agent)
    return ForgotPasswordResponse.from_result(result)


@router.post("/auth/reset-password", response_model=LoginResponse)
def reset_password(request: Request, response: Response, body: ResetPasswordRequest) -> LoginResponse:
    ip, user_agent = _client_context(request)
    bundle = _service(request).reset_password(body.code, body.new_password, ip, user_agent)
    response.headers["Cache-Control"] = "no-store"
    return LoginResponse.from_bundle(bundle)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", status_code=204)
def logout(
    request: Request,
    session_id: Optional[int] = Query(default=None, ge=1),
    claims: dict = Depends(get_current_claims),
) -> Response:
    """Revoke a session owned by the caller.

    session_id defaults to the sid claim of the access token, i.e. the
    session the caller is currently using.
    """
    target = session_id if session_id is not None else claims.get("sid")
    if target is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "session_id is required."},
        )
    ip, user_agent = _client_context(request)
    _service(request).logout(int(target), int(claims["user_id"]), ip, user_agent)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(claims: dict = Depends(get_current_claims)) -> MeResponse:
    """Return the identity carried by the current access token."""
    return MeResponse(
        user_id=claims["user_id"],
        username=claims["username"],
        email=claims["email"],
        session_id=claims.get("sid"),
    )
