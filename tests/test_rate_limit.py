"""
tests/test_rate_limit.py -- Per-IP limits on POST /auth/login and /auth/forgot-password.

Runs in its own module: the shared api_client fixture switches the limiter
off, and the fixture here turns it back on (with fresh counters) per test.
"""

from __future__ import annotations

import pytest

from api.limiter import limiter
from core.config import get_settings

_BASE = "/api/v1/auth"


@pytest.fixture
def limited(api_client):
    limiter.reset()
    limiter.enabled = True
    yield api_client
    limiter.enabled = False
    limiter.reset()


def _allowed(limit: str) -> int:
    return int(limit.split("/")[0])


def test_forgot_password_limit_returns_429(limited):
    client, _ = limited
    for _ in range(_allowed(get_settings().forgot_password_rate_limit)):
        resp = client.post(f"{_BASE}/forgot-password", json={"identifier": "nobody"})
        assert resp.status_code == 200
    blocked = client.post(f"{_BASE}/forgot-password", json={"identifier": "nobody"})
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "rate_limited"
    assert "retry-after" in blocked.headers


def test_login_limit_returns_429(limited):
    client, _ = limited
    for _ in range(_allowed(get_settings().login_rate_limit)):
        resp = client.post(f"{_BASE}/login", json={"identifier": "nobody", "password": "wrong1"})
        assert resp.status_code == 401
    blocked = client.post(f"{_BASE}/login", json={"identifier": "nobody", "password": "wrong1"})
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "rate_limited"


def test_limits_are_counted_per_route(limited):
    client, _ = limited
    for _ in range(_allowed(get_settings().forgot_password_rate_limit)):
        client.post(f"{_BASE}/forgot-password", json={"identifier": "nobody"})
    resp = client.post(f"{_BASE}/login", json={"identifier": "nobody", "password": "wrong1"})
    assert resp.status_code == 401
