"""
auth/service.py -- AuthService: registration, login, refresh rotation, logout
and the password reset handshake.

This is the state machine of the package. It owns no storage of its own;
every collaborator (store, token signer, notifier, audit log, settings) is
handed in once at construction, typically from the FastAPI lifespan.

Expected failures are raised as the typed errors in auth/errors.py. Store
errors (connection loss, aborted transaction) are not caught here and reach
the boundary unchanged.

Security design decisions:
  Refresh tokens: secrets.token_urlsafe(32), 256 bits. Only the bcrypt hash
      is stored. The plaintext goes back to the caller once and can only be
      re-verified, never read back.

  Rotation: every successful refresh revokes the presented session before
      issuing a new one. Presenting the same refresh token twice always
      fails the second time. If two requests race with the same token, the
      one whose revoke touches no row loses.

  Enumeration: login gives the same InvalidCredentials for an unknown
      identifier and for a wrong password, and spends bcrypt work against
      DUMMY_HASH in the unknown case. forgot_password returns the same
      message whether or not the identifier exists. The one exception is a
      disabled account, which raises AccountDisabled; see DESIGN.md.
      With ECHO_RESET_CODE on, only existing accounts get a reset_code back,
      so that setting must stay off in production.

  Identifiers: usernames and emails are unique and matched regardless of
      case. Emails are stored lower-cased; usernames keep the case they
      were registered with.

  Reset codes: "{reset_id}:{token}". The id selects the row, the token is
      checked against its bcrypt hash. Consumption and the password change
      commit in one transaction (AuthStore.reset_password).
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth import audit
from auth.audit import AuditLog
from auth.errors import (
    AccountDisabled,
    Conflict,
    ExpiredOrUsedToken,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidResetCode,
    ValidationError,
)
from auth.models import ForgotPasswordResult, LoginBundle, User
from auth.notifier import Notifier
from auth.passwords import DUMMY_HASH, MAX_SECRET_BYTES, hash_secret, verify_secret
from auth.store import AuthStore
from auth.tokens import TokenSigner
from core.config import Settings, get_settings

logger = logging.getLogger("tubeauth.auth")

GENERIC_RESET_MESSAGE = (
    "If the email or username exists in the system, instructions to reset the password have been sent."
)

MIN_PASSWORD_LENGTH = 6
_TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(value: str | None, field: str, max_length: int) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required.")
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters.")
    return value


def _check_password(password: str | None) -> str:
    if not password:
        raise ValidationError("Password is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > MAX_SECRET_BYTES:
        raise ValidationError(f"Password must be at most {MAX_SECRET_BYTES} bytes.")
    return password


def _parse_reset_code(code: str | None) -> tuple[int, str]:
    """Split "resetId:token" on the first colon. Anything malformed is InvalidResetCode."""
    reset_part, sep, token = (code or "").strip().partition(":")
    if not sep or not token or not (reset_part.isascii() and reset_part.isdigit()):
        raise InvalidResetCode()
    reset_id = int(reset_part)
    if reset_id <= 0:
        raise InvalidResetCode()
    return reset_id, token


class AuthService:
    """Orchestrates the credential and session lifecycle.

    Usage:
        service = AuthService(store, TokenSigner.from_settings(settings), LogNotifier())
        bundle = service.login("alice", "secret1", ip="127.0.0.1", user_agent="curl/8")
        bundle = service.refresh(bundle.refresh_token, ip, user_agent)
        service.logout(bundle.session_id, bundle.user_id)

    clock is injectable so tests can move "now" without sleeping.
    """

    def __init__(
        self,
        store: AuthStore,
        signer: TokenSigner,
        notifier: Notifier,
        audit_log: AuditLog | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.signer = signer
        self.notifier = notifier
        self.audit_log = audit_log or AuditLog(store)
        self.settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(
        self,
        first_name: str,
        last_name: str,
        username: str,
        email: str,
        password: str,
        ip: str,
        user_agent: str,
    ) -> LoginBundle:
        first_name = _require(first_name, "First name", 100)
        last_name = _require(last_name, "Last name", 100)
        username = _require(username, "Username", 50)
        email = _require(email, "Email", 255).lower()
        if "@" in username:
            raise ValidationError("Username may not contain '@'.")
        if "@" not in email:
            raise ValidationError("Email address is not valid.")
        _check_password(password)

        if self.store.get_by_identifier(username) is not None or self.store.get_by_identifier(email) is not None:
            raise Conflict()

        user = User(
            first_name=first_name,
            last_name=last_name,
            username=username,
            email=email,
            password_hash=hash_secret(password),
        )
        try:
            user_id = self.store.create_user(user, now=self._clock())
        except IntegrityError as exc:
            # A concurrent registration claimed the name between check and insert.
            raise Conflict() from exc

        logger.info("Registered user %s (id=%d)", username, user_id)
        self.audit_log.record(
            audit.REGISTER,
            user_id,
            f"Account registered for {username} ({email}).",
            ip,
            user_agent,
            now=self._clock(),
        )
        return self._issue_bundle(user_id, username, email, ip, user_agent)

    def login(self, identifier: str, password: str, ip: str, user_agent: str) -> LoginBundle:
        identifier = _require(identifier, "Identifier", 255)
        if not password:
            raise ValidationError("Password is required.")

        user = self.store.get_by_identifier(identifier)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt
            verify_secret(password, DUMMY_HASH)
            logger.warning("Login failed for unknown identifier from %s", ip)
            raise InvalidCredentials()
        if not user.is_active:
            logger.warning("Login refused for disabled user id=%d from %s", user.id, ip)
            raise AccountDisabled()
        if not verify_secret(password, user.password_hash):
            logger.warning("Login failed for user id=%d from %s: bad password", user.id, ip)
            raise InvalidCredentials()

        self.store.update_last_login(user.id, self._clock())
        bundle = self._issue_bundle(user.id, user.username, user.email, ip, user_agent)
        self.audit_log.record(
            audit.LOGIN,
            user.id,
            f"User {user.username} logged in.",
            ip,
            user_agent,
            entity_type="SESSION",
            entity_id=bundle.session_id,
            now=self._clock(),
        )
        return bundle

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, ip: str, user_agent: str) -> tuple[str, int]:
        """Persist a new session and return (plaintext refresh token, session id).

        The plaintext is not retrievable after this call returns.
        """
        refresh_token = secrets.token_urlsafe(_TOKEN_BYTES)
        now = self._clock()
        expires_at = now + timedelta(days=self.settings.refresh_token_ttl_days)
        session_id = self.store.create_session(user_id, hash_secret(refresh_token), ip, user_agent, expires_at, now=now)
        return refresh_token, session_id

    def refresh(self, refresh_token: str, ip: str, user_agent: str) -> LoginBundle:
        """Exchange a refresh token for a new pair, retiring the old session."""
        if not refresh_token:
            raise InvalidOrExpiredToken()
        now = self._clock()
        session = self.store.find_active_session_by_token(refresh_token, now)
        if session is None:
            logger.warning("Refresh rejected from %s: no active session matches", ip)
            raise InvalidOrExpiredToken()
        if not self.store.revoke_session(session.id, now=now):
            logger.warning("Refresh rejected from %s: session %d was rotated concurrently", ip, session.id)
            raise InvalidOrExpiredToken()

        user = self.store.get_by_id(session.user_id)
        if user is None:
            raise InvalidOrExpiredToken()
        if not user.is_active:
            raise AccountDisabled()

        bundle = self._issue_bundle(user.id, user.username, user.email, ip, user_agent)
        self.audit_log.record(
            audit.REFRESH_TOKEN,
            user.id,
            f"Session {session.id} rotated to session {bundle.session_id}.",
            ip,
            user_agent,
            entity_type="SESSION",
            entity_id=bundle.session_id,
            now=self._clock(),
        )
        return bundle

    def logout(self, session_id: int, user_id: int, ip: str = "", user_agent: str = "") -> None:
        """Revoke one session owned by user_id.

        Unknown and already-revoked sessions are a silent no-op. A session
        that belongs to someone else raises Forbidden.
        """
        session = self.store.get_session(session_id)
        if session is None:
            return
        if session.user_id != user_id:
            logger.warning("User id=%d tried to revoke session %d owned by another user", user_id, session_id)
            raise Forbidden()
        if self.store.revoke_session(session_id, user_id=user_id, now=self._clock()):
            self.audit_log.record(
                audit.LOGOUT,
                user_id,
                f"Session {session_id} revoked by its owner.",
                ip,
                user_agent,
                entity_type="SESSION",
                entity_id=session_id,
                now=self._clock(),
            )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, identifier: str, ip: str, user_agent: str) -> ForgotPasswordResult:
        identifier = _require(identifier, "Identifier", 255)
        user = self.store.get_by_identifier(identifier)
        if user is None:
            return ForgotPasswordResult(message=GENERIC_RESET_MESSAGE)
        if not user.is_active:
            raise AccountDisabled()

        token = secrets.token_urlsafe(_TOKEN_BYTES)
        now = self._clock()
        expires_at = now + timedelta(minutes=self.settings.password_reset_ttl_minutes)
        reset_id = self.store.create_password_reset(user.id, hash_secret(token), expires_at, now=now)
        self.audit_log.record(
            audit.FORGOT_PASSWORD_REQUEST,
            user.id,
            f"Password reset requested for {user.username} ({user.email}).",
            ip,
            user_agent,
            now=self._clock(),
        )

        code = f"{reset_id}:{token}"
        subject, body = self._compose_reset_mail(user, code)
        try:
            delivered = self.notifier.send(user.email, subject, body)
        except Exception:
            logger.exception("Notifier raised while sending reset code for user id=%d", user.id)
            delivered = False
        if not delivered:
            logger.warning("Reset code for user id=%d was not delivered", user.id)

        return ForgotPasswordResult(
            message=GENERIC_RESET_MESSAGE,
            reset_code=code if self.settings.echo_reset_code else None,
        )

    def reset_password(self, code: str, new_password: str, ip: str, user_agent: str) -> LoginBundle:
        reset_id, token = _parse_reset_code(code)

        grant = self.store.get_password_reset(reset_id)
        if grant is None:
            raise InvalidResetCode()
        if not grant.is_active:
            raise AccountDisabled()
        now = self._clock()
        if not grant.reset.is_usable(now):
            raise ExpiredOrUsedToken()
        if not verify_secret(token, grant.reset.token_hash):
            logger.warning("Reset code %d presented with a wrong token from %s", reset_id, ip)
            raise InvalidResetCode()
        _check_password(new_password)

        user_id = grant.reset.user_id
        if not self.store.reset_password(reset_id, user_id, hash_secret(new_password), now):
            raise ExpiredOrUsedToken()

        logger.info("Password reset completed for user id=%d", user_id)
        self.audit_log.record(
            audit.RESET_PASSWORD,
            user_id,
            f"User {grant.username} reset their password.",
            ip,
            user_agent,
            now=self._clock(),
        )
        return self._issue_bundle(user_id, grant.username, grant.email, ip, user_agent)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_bundle(self, user_id: int, username: str, email: str, ip: str, user_agent: str) -> LoginBundle:
        refresh_token, session_id = self.create_session(user_id, ip, user_agent)
        access_token = self.signer.issue(user_id, username, email, session_id=session_id)
        return LoginBundle(
            access_token=access_token,
            refresh_token=refresh_token,
            user_id=user_id,
            username=username,
            email=email,
            session_id=session_id,
            expires_in=self.signer.expire_seconds,
        )

    def _compose_reset_mail(self, user: User, code: str) -> tuple[str, str]:
        app_name = self.settings.app_name
        subject = f"{app_name} - Reset your password"
        body = (
            f"Hello {user.username},\n\n"
            f"We received a request to reset the password for your {app_name} account.\n\n"
            "Copy and paste this code into the password recovery screen:\n\n"
            f"{code}\n\n"
            f"The code expires in {self.settings.password_reset_ttl_minutes} minutes and can be used once.\n"
            "If you did not request this change, you can ignore this message.\n\n"
            f"The {app_name} team"
        )
        return subject, body
