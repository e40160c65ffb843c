"""
auth/models.py -- Domain dataclasses for credential and session entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). The store owns persistence, the service owns the state machine.

Timestamps are timezone-aware UTC datetimes. The store serializes them to
fixed-width ISO 8601 strings; see auth/store.py.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account that can log in with username-or-email and a password.

    password_hash is a bcrypt digest produced by auth.passwords.hash_secret().
    The plaintext is never stored. id is None before the record is inserted.
    """

    first_name: str
    last_name: str
    username: str
    email: str
    password_hash: str
    id: int | None = None
    is_active: bool = True
    email_verified_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Session:
    """A refresh-token grant.

    Only the bcrypt hash of the refresh token is stored. The plaintext is
    handed to the client once, at creation. Sessions are revoked, never
    deleted, so revoked_at doubles as an audit trail of logouts and rotations.
    """

    user_id: int
    refresh_token_hash: str
    expires_at: datetime
    id: int | None = None
    user_agent: str = ""
    ip_address: str = ""
    created_at: datetime | None = None
    revoked_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass
class PasswordReset:
    """A one-time credential-recovery grant. Consumed by setting used_at."""

    user_id: int
    token_hash: str
    expires_at: datetime
    id: int | None = None
    used_at: datetime | None = None
    created_at: datetime | None = None

    def is_usable(self, now: datetime) -> bool:
        return self.used_at is None and self.expires_at > now


@dataclass
class PasswordResetGrant:
    """A PasswordReset joined with the owning user's identity fields."""

    reset: PasswordReset
    username: str
    email: str
    is_active: bool


@dataclass
class AuditEntry:
    """Immutable append-only record of a security-relevant action.

    user_id is optional and deliberately not a foreign key: entries must
    outlive the user they describe.
    """

    action: str  # "REGISTER", "LOGIN", "REFRESH_TOKEN", "LOGOUT", ...
    entity_type: str  # "USER" | "SESSION"
    entity_id: str
    user_id: int | None = None
    description: str = ""
    ip_address: str = ""
    user_agent: str = ""
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class LoginBundle:
    """What a successful register/login/refresh/reset hands back to the caller.

    refresh_token is the plaintext secret. It is shown exactly once; only its
    hash is persisted. session_id lets the client name the session on logout.
    """

    access_token: str
    refresh_token: str
    user_id: int
    username: str
    email: str
    session_id: int
    expires_in: int
    token_type: str = "bearer"


@dataclass
class ForgotPasswordResult:
    """Generic confirmation for a reset request.

    reset_code is only populated when echo_reset_code is enabled
    (non-production delivery) and a reset was actually created.
    """

    message: str
    reset_code: str | None = None
