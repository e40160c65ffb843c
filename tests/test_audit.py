"""Unit tests for auth/audit.py -- best-effort audit writes."""

import logging
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from auth.audit import LOGIN, AuditLog


def test_record_defaults_entity_to_user(store) -> None:
    assert AuditLog(store).record(LOGIN, 5, "User logged in", "10.0.0.1", "ua") is True
    entry = store.list_audit_entries(user_id=5)[0]
    assert entry.action == LOGIN
    assert entry.entity_type == "USER"
    assert entry.entity_id == "5"
    assert entry.ip_address == "10.0.0.1"


def test_record_anonymous_entry(store) -> None:
    assert AuditLog(store).record(LOGIN, None, "x", entity_type="SESSION", entity_id=9) is True
    entry = store.list_audit_entries()[0]
    assert entry.user_id is None
    assert entry.entity_id == "9"


def test_write_failure_is_logged_not_raised(store, caplog) -> None:
    error = OperationalError("INSERT", {}, Exception("disk full"))
    with patch.object(store, "insert_audit_entry", side_effect=error):
        with caplog.at_level(logging.ERROR, logger="tubeauth.audit"):
            assert AuditLog(store).record(LOGIN, 1, "x") is False
    assert "Audit write failed" in caplog.text
