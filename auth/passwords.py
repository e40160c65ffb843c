"""
auth/passwords.py -- One-way hashing for passwords, refresh tokens and reset tokens.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Every call to hash_secret()
  draws a fresh salt via bcrypt.gensalt(), and the salt is embedded in the
  digest, so two hashes of the same input never compare equal as strings.
  Only verify_secret() can tell whether a plaintext matches.

  The same function hashes account passwords, refresh tokens and reset
  tokens. Nothing that could be turned back into a usable secret is ever
  persisted.

  Cost factor comes from Settings.bcrypt_rounds (12 in production; tests
  drop it to 4 through the BCRYPT_ROUNDS env var).

  bcrypt only looks at the first 72 bytes of input and current releases
  raise ValueError past that. AuthService rejects longer passwords with a
  ValidationError before they reach this module; see MAX_SECRET_BYTES.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()

MAX_SECRET_BYTES = 72


def hash_secret(plain: str) -> str:
    """Return a salted bcrypt digest of plain."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_secret(plain: str, hashed: str | None) -> bool:
    """Return True if plain matches the bcrypt digest.

    A missing or malformed digest returns False rather than raising, so a
    corrupted row reads as "no match" instead of a 500.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load. Login verifies against it when the identifier
# is unknown so "no such user" costs the same bcrypt work as "wrong password".
DUMMY_HASH: str = hash_secret("tubeauth_timing_dummy")
