"""
auth/audit.py -- Best-effort append-only audit trail.

Audit writes are a side channel, not part of the business transaction. A
failed insert is logged with its traceback and swallowed, so a broken
audit_logs table can never stop a user from logging in or resetting a
password. The operation that triggered the entry has already committed by
the time record() runs.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuditEntry
from auth.store import AuthStore

logger = logging.getLogger("tubeauth.audit")

# Action tags
REGISTER = "REGISTER"
LOGIN = "LOGIN"
REFRESH_TOKEN = "REFRESH_TOKEN"
LOGOUT = "LOGOUT"
FORGOT_PASSWORD_REQUEST = "FORGOT_PASSWORD_REQUEST"
RESET_PASSWORD = "RESET_PASSWORD"


class AuditLog:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def record(
        self,
        action: str,
        user_id: int | None,
        description: str,
        ip_address: str = "",
        user_agent: str = "",
        entity_type: str = "USER",
        entity_id: str | int | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Append one entry. Returns False (and logs) if the write failed.

        entity_id defaults to the user id, matching the common USER entries.
        now stamps created_at; the store falls back to the wall clock.
        """
        if entity_id is None:
            entity_id = user_id if user_id is not None else ""
        entry = AuditEntry(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            user_id=user_id,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        try:
            self._store.insert_audit_entry(entry)
        except SQLAlchemyError:
            logger.exception("Audit write failed (action=%s user_id=%s)", action, user_id)
            return False
        return True
