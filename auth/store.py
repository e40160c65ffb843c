"""
auth/store.py -- SQLAlchemy Core persistence layer for credential entities.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_session / ... are the mappers. Service and route code
never touches SQL directly.

Tables: users, user_sessions, password_resets, audit_logs.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh tokens and reset tokens are stored as bcrypt digests. Because every
  digest carries its own random salt there is no way to look a token up by
  hash; find_active_session_by_token() scans the active rows and verifies
  each candidate. The scan only touches non-revoked, non-expired sessions,
  which keeps it small in practice.

  audit_logs.user_id is intentionally not a foreign key so the ledger
  survives user removal. user_sessions and password_resets cascade.

Atomicity:
  Every method opens its own connection and commits before returning.
  reset_password() is the only multi-statement write and runs inside
  engine.begin(), so the password change and the reset consumption commit
  or roll back together.

Timestamps:
  Stored as fixed-width ISO 8601 UTC strings ("...T10:00:00.000000+00:00").
  Fixed width keeps lexicographic order equal to chronological order, which
  the expires_at > now filters rely on.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import AuditEntry, PasswordReset, PasswordResetGrant, Session, User
from auth.passwords import verify_secret
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),  # bcrypt digest
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified_at", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Uniqueness ignores case: "Alice" and "alice" are the same account.
Index("ux_users_username_ci", func.lower(_users.c.username), unique=True)
Index("ux_users_email_ci", func.lower(_users.c.email), unique=True)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("refresh_token_hash", Text, nullable=False),  # bcrypt digest
    Column("user_agent", String(512), nullable=False, server_default=""),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Index("ix_user_sessions_user_id", "user_id"),
    Index("ix_user_sessions_active", "revoked_at", "expires_at"),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("token_hash", Text, nullable=False),  # bcrypt digest
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # not a FK: entries outlive users
    Column("action", String(64), nullable=False),
    Column("entity_type", String(32), nullable=False),
    Column("entity_id", String(64), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("ip_address", String(45), nullable=False, server_default=""),
    Column("user_agent", String(512), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_logs_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Without foreign_keys=ON the ON DELETE CASCADE
    clauses above are silently ignored.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, sessions, password resets and audit entries.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        uid = store.create_user(User(first_name="A", last_name="L", username="alice",
                                     email="alice@x.com", password_hash=hash_secret("secret1")))
        sid = store.create_session(uid, hash_secret(token), "127.0.0.1", "curl", expires_at)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, now: datetime | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email is
        already taken. AuthService turns that into a Conflict, which also
        covers two concurrent registrations racing past its pre-check.
        Both uniqueness checks ignore case.
        """
        now = _to_iso(now or _utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    first_name=user.first_name,
                    last_name=user.last_name,
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    is_active=1 if user.is_active else 0,
                    email_verified_at=_to_iso(user.email_verified_at) if user.email_verified_at else None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_identifier(self, identifier: str) -> User | None:
        """Look up a user by username OR email, ignoring case.

        A username match wins over an email match should the two ever
        collide across different rows.
        """
        needle = identifier.lower()
        username = func.lower(_users.c.username)
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .where(or_(username == needle, func.lower(_users.c.email) == needle))
                .order_by(case((username == needle, 0), else_=1))
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_last_login(self, user_id: int, now: datetime | None = None) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(last_login_at=_to_iso(now or _utcnow()))
            )
            conn.commit()

    def set_active(self, user_id: int, is_active: bool) -> bool:
        """Enable or disable an account. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if is_active else 0, updated_at=_to_iso(_utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        user_id: int,
        refresh_token_hash: str,
        ip_address: str,
        user_agent: str,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> int:
        """Insert a session row and return its ID. The caller supplies the hash, never the token."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    refresh_token_hash=refresh_token_hash,
                    ip_address=ip_address[:45],
                    user_agent=user_agent[:512],
                    created_at=_to_iso(now or _utcnow()),
                    expires_at=_to_iso(expires_at),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_active_session_by_token(self, refresh_token: str, now: datetime | None = None) -> Session | None:
        """Return the active session whose stored hash matches refresh_token, or None.

        Linear scan over active rows (revoked_at IS NULL AND expires_at > now),
        newest first. Rows are fetched and the connection released before the
        bcrypt checks run, so the slow part never holds a pooled connection.
        """
        now_iso = _to_iso(now or _utcnow())
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(_sessions.c.revoked_at.is_(None) & (_sessions.c.expires_at > now_iso))
                .order_by(_sessions.c.id.desc())
            ).fetchall()
        for row in rows:
            if verify_secret(refresh_token, row.refresh_token_hash):
                return _row_to_session(row)
        return None

    def list_active_sessions(self, user_id: int, now: datetime | None = None) -> list[Session]:
        now_iso = _to_iso(now or _utcnow())
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & _sessions.c.revoked_at.is_(None)
                    & (_sessions.c.expires_at > now_iso)
                )
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def revoke_session(self, session_id: int, user_id: int | None = None, now: datetime | None = None) -> bool:
        """Stamp revoked_at on a session that is not revoked yet.

        When user_id is given both conditions must match, so a caller cannot
        revoke another account's session even if it knows the ID. Idempotent:
        an already-revoked session keeps its original timestamp.

        Returns True if a row was revoked by this call.
        """
        condition = (_sessions.c.id == session_id) & _sessions.c.revoked_at.is_(None)
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(condition).values(revoked_at=_to_iso(now or _utcnow())))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password resets
    # ------------------------------------------------------------------

    def create_password_reset(
        self, user_id: int, token_hash: str, expires_at: datetime, now: datetime | None = None
    ) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _password_resets.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=_to_iso(expires_at),
                    created_at=_to_iso(now or _utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_password_reset(self, reset_id: int) -> PasswordResetGrant | None:
        """Return the reset row joined with its owner's identity, or None."""
        query = (
            select(_password_resets, _users.c.username, _users.c.email, _users.c.is_active)
            .select_from(_password_resets.join(_users, _users.c.id == _password_resets.c.user_id))
            .where(_password_resets.c.id == reset_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return PasswordResetGrant(
            reset=_row_to_password_reset(row),
            username=row.username,
            email=row.email,
            is_active=bool(row.is_active),
        )

    def reset_password(self, reset_id: int, user_id: int, new_password_hash: str, now: datetime | None = None) -> bool:
        """Consume a reset and replace the owner's password in ONE transaction.

        The reset is marked used only if it is still unused and unexpired;
        if that conditional update touches no row, nothing else is written
        and False is returned (another request won the race). Any exception
        inside the block rolls back both statements.
        """
        now_iso = _to_iso(now or _utcnow())
        with self.engine.begin() as conn:
            consumed = conn.execute(
                _password_resets.update()
                .where(
                    (_password_resets.c.id == reset_id)
                    & (_password_resets.c.user_id == user_id)
                    & _password_resets.c.used_at.is_(None)
                    & (_password_resets.c.expires_at > now_iso)
                )
                .values(used_at=now_iso)
            )
            if consumed.rowcount == 0:
                return False
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(password_hash=new_password_hash, updated_at=now_iso)
            )
        return True

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def insert_audit_entry(self, entry: AuditEntry) -> int:
        """Append an audit entry. Entries are never updated or deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    description=entry.description,
                    ip_address=entry.ip_address[:45],
                    user_agent=entry.user_agent[:512],
                    created_at=_to_iso(entry.created_at or _utcnow()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_audit_entries(self, user_id: int | None = None, action: str | None = None) -> list[AuditEntry]:
        """Return audit entries oldest first, optionally filtered by user and action."""
        query = _audit_logs.select().order_by(_audit_logs.c.id)
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        if action is not None:
            query = query.where(_audit_logs.c.action == action)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        email_verified_at=_from_iso(row.email_verified_at),
        last_login_at=_from_iso(row.last_login_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token_hash=row.refresh_token_hash,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        created_at=_from_iso(row.created_at),
        expires_at=_from_iso(row.expires_at),
        revoked_at=_from_iso(row.revoked_at),
    )


def _row_to_password_reset(row) -> PasswordReset:
    return PasswordReset(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_from_iso(row.expires_at),
        used_at=_from_iso(row.used_at),
        created_at=_from_iso(row.created_at),
    )


def _row_to_audit_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        description=row.description,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_from_iso(row.created_at),
    )
