"""
auth/errors.py -- Typed failures raised by AuthService.

Every expected, caller-recoverable condition has its own class so the HTTP
boundary can map it to a status without parsing message text. code is the
stable machine-readable identifier placed in the JSON error envelope;
message is safe to show to end users.

Store and transport failures are NOT represented here. They propagate as
whatever SQLAlchemy / smtplib raised and are turned into a generic 500 by the
boundary's catch-all handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for expected authentication failures."""

    code: str = "auth_error"
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input. Caller's fault, no state was changed."""

    code = "validation_error"
    message = "Invalid input."


class Conflict(AuthError):
    code = "conflict"
    message = "Username or email is already registered."


class InvalidCredentials(AuthError):
    # Same text for "no such user" and "wrong password" -- no enumeration.
    code = "invalid_credentials"
    message = "Invalid username or password."


class AccountDisabled(AuthError):
    code = "account_disabled"
    message = "This account is disabled."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_refresh_token"
    message = "Refresh token is invalid or expired."


class InvalidResetCode(AuthError):
    code = "invalid_reset_code"
    message = "Password reset code is invalid."


class ExpiredOrUsedToken(AuthError):
    code = "expired_reset_code"
    message = "Password reset code has already been used or has expired."


class Forbidden(AuthError):
    code = "forbidden"
    message = "You may only end your own sessions."
