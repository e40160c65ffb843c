"""
API request and response models for tubeauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field limits here are the first line of validation; AuthService re-checks
the invariants it depends on (blank fields, bcrypt's 72-byte limit) so it
stays safe when called without this layer.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import ForgotPasswordResult, LoginBundle

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.\-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=72)


class LoginRequest(BaseModel):
    """identifier is a username or an email address; the store tries both."""

    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=512)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    identifier: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    """code is the combined "resetId:token" string delivered by mail."""

    code: str = Field(min_length=3, max_length=512)
    new_password: str = Field(min_length=6, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Returned by register, login, refresh and reset-password.

    refresh_token is shown once. The server keeps only its hash.
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    username: str
    email: str
    session_id: int

    @classmethod
    def from_bundle(cls, bundle: LoginBundle) -> "LoginResponse":
        return cls(
            access_token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            token_type=bundle.token_type,
            expires_in=bundle.expires_in,
            user_id=bundle.user_id,
            username=bundle.username,
            email=bundle.email,
            session_id=bundle.session_id,
        )


class ForgotPasswordResponse(BaseModel):
    message: str
    reset_code: Optional[str] = None

    @classmethod
    def from_result(cls, result: ForgotPasswordResult) -> "ForgotPasswordResponse":
        return cls(message=result.message, reset_code=result.reset_code)


class MeResponse(BaseModel):
    user_id: int
    username: str
    email: str
    session_id: Optional[int] = None


class ErrorDetail(BaseModel):
    """Machine-readable error code plus a human-readable message."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every non-2xx response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
