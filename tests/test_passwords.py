"""Unit tests for auth/passwords.py."""

from auth.passwords import DUMMY_HASH, hash_secret, verify_secret


def test_hash_is_salted() -> None:
    first = hash_secret("secret1")
    second = hash_secret("secret1")
    assert first != second
    assert verify_secret("secret1", first)
    assert verify_secret("secret1", second)


def test_hash_never_contains_plaintext() -> None:
    assert "secret1" not in hash_secret("secret1")


def test_wrong_secret_rejected() -> None:
    assert not verify_secret("secret2", hash_secret("secret1"))


def test_missing_or_malformed_hash_is_no_match() -> None:
    assert verify_secret("secret1", None) is False
    assert verify_secret("secret1", "") is False
    assert verify_secret("secret1", "not-a-bcrypt-hash") is False


def test_dummy_hash_is_a_real_digest() -> None:
    assert DUMMY_HASH.startswith("$2")
    assert not verify_secret("secret1", DUMMY_HASH)
