"""Unit tests for auth/tokens.py -- TokenSigner issue/verify."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from auth.tokens import TokenSigner

_KEY = "test-secret-key-that-is-long-enough-1234"


def test_round_trip_claims(signer) -> None:
    claims = signer.verify(signer.issue(42, "alice", "alice@x.com", session_id=7))
    assert claims["sub"] == "42"
    assert claims["user_id"] == 42
    assert claims["username"] == "alice"
    assert claims["email"] == "alice@x.com"
    assert claims["sid"] == 7
    assert claims["iss"] == "tubeauth-test"
    assert claims["aud"] == "tubeauth-test-clients"
    assert claims["exp"] - claims["iat"] == 900


def test_sid_omitted_without_session(signer) -> None:
    claims = signer.verify(signer.issue(1, "bob", "bob@x.com"))
    assert "sid" not in claims


def test_expired_token_rejected() -> None:
    stale = TokenSigner(_KEY, "tubeauth-test", "tubeauth-test-clients", expire_seconds=-10)
    assert stale.verify(stale.issue(1, "bob", "bob@x.com")) is None


def test_wrong_key_rejected(signer) -> None:
    other = TokenSigner("another-secret-key-that-is-long-enough-9", signer.issuer, signer.audience, 900)
    assert signer.verify(other.issue(1, "bob", "bob@x.com")) is None


def test_wrong_audience_rejected(signer) -> None:
    other = TokenSigner(_KEY, signer.issuer, "someone-else", 900)
    assert signer.verify(other.issue(1, "bob", "bob@x.com")) is None


def test_wrong_issuer_rejected(signer) -> None:
    other = TokenSigner(_KEY, "not-tubeauth", signer.audience, 900)
    assert signer.verify(other.issue(1, "bob", "bob@x.com")) is None


def test_tampered_token_rejected(signer) -> None:
    token = signer.issue(1, "bob", "bob@x.com")
    header, payload, signature = token.split(".")
    flipped = signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")
    assert signer.verify(f"{header}.{payload}.{flipped}") is None
    assert signer.verify("not-a-jwt") is None


def test_missing_identity_claims_rejected(signer) -> None:
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": "1", "iss": signer.issuer, "aud": signer.audience, "iat": now, "exp": now + timedelta(minutes=5)},
        _KEY,
        algorithm="HS256",
    )
    assert signer.verify(token) is None
