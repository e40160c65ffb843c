"""
auth/tokens.py -- Stateless signed access tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the user's id, username and email
       plus iss / aud / iat / exp, and a sid claim naming the session whose
       refresh token produced them. Verification returns None on any failure
       (bad signature, expired, wrong issuer or audience, missing claims);
       the route layer turns that into a 401.

  Access tokens are never persisted and cannot be revoked one by one. Ending
  a session revokes its refresh token, so the client is forced back through
  refresh (denied) or login once the short-lived access token runs out.

  TokenSigner is an object rather than module functions so the service and
  the tests can hold one configured with an explicit key and lifetime.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import Settings

logger = logging.getLogger("tubeauth.auth")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "user_id", "username", "email")


class TokenSigner:
    """Issue and verify HS256 access tokens.

    Usage:
        signer = TokenSigner.from_settings(get_settings())
        token = signer.issue(42, "alice", "alice@x.com", session_id=7)
        claims = signer.verify(token)   # dict or None
    """

    def __init__(self, secret_key: str, issuer: str, audience: str, expire_seconds: int) -> None:
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.expire_seconds = expire_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenSigner:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            expire_seconds=settings.access_token_expire_seconds,
        )

    def issue(self, user_id: int, username: str, email: str, session_id: int | None = None) -> str:
        """Encode a signed JWT for the given identity."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "username": username,
            "email": email,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        if session_id is not None:
            payload["sid"] = session_id
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> dict | None:
        """Decode and verify a JWT. Returns the claims dict or None on any failure."""
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError:
            return None
        if any(name not in claims for name in _REQUIRED_CLAIMS):
            logger.warning("Rejected access token with missing identity claims")
            return None
        return claims
