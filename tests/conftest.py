"""
tests/conftest.py -- Shared test fixtures for tubeauth.

This module provides:
  - store / signer / notifier / clock / service: unit-level collaborators
    backed by a private in-memory SQLite database per test
  - alice: a registered account plus the bundle register() returned
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit fixtures stay on one thread, so :memory: is enough.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() needs DEBUG to auto-generate SECRET_KEY, and auth.passwords
reads the bcrypt cost once at import. Cost 4 keeps the suite fast.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.audit import AuditLog
from auth.models import LoginBundle
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import TokenSigner
from core.config import get_settings

TEST_IP = "203.0.113.7"
TEST_UA = "pytest-agent/1.0"

_CODE_RE = re.compile(r"^(\d+:[A-Za-z0-9_\-]+)$", re.MULTILINE)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Captures every message instead of delivering it.

    fail=True makes send() report failure; error=... makes it raise.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False
        self.error: Exception | None = None

    def send(self, to_address: str, subject: str, body: str) -> bool:
        if self.error is not None:
            raise self.error
        self.sent.append((to_address, subject, body))
        return not self.fail

    def last_code(self) -> str:
        """Extract the "resetId:token" line from the most recent message body."""
        _to, _subject, body = self.sent[-1]
        match = _CODE_RE.search(body)
        assert match, f"No reset code found in body:\n{body}"
        return match.group(1)


class FakeClock:
    """Injectable 'now' that tests can move forward without sleeping."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(
        secret_key="test-secret-key-that-is-long-enough-1234",
        issuer="tubeauth-test",
        audience="tubeauth-test-clients",
        expire_seconds=900,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store, signer, notifier, clock) -> AuthService:
    return AuthService(store, signer, notifier, AuditLog(store), get_settings(), clock=clock)


@pytest.fixture
def alice(service: AuthService) -> LoginBundle:
    """Register alice/alice@x.com/secret1 and return the register() bundle."""
    return service.register("Alice", "Liddell", "alice", "alice@x.com", "secret1", TEST_IP, TEST_UA)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and service into app.state so routes
    see an isolated database and a recording notifier.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.token_signer = service.signer
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    The service echoes reset codes (non-production delivery) so the reset
    flow can be driven over HTTP. Rate limiting is switched off: a module's
    worth of logins from one test IP would otherwise trip the login limit.
    """
    db_name = f"test_auth_{request.module.__name__.rsplit('.', 1)[-1]}"
    store = AuthStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    settings = get_settings().model_copy(update={"echo_reset_code": True})
    notifier = RecordingNotifier()
    service = AuthService(store, TokenSigner.from_settings(settings), notifier, AuditLog(store), settings)

    app.router.lifespan_context = _patch_lifespan(store, service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier

    limiter.enabled = True
    store.close()
