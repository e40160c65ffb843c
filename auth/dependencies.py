"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token authentication.

Access tokens arrive as "Authorization: Bearer <token>". They are verified
statelessly with the TokenSigner stored on app.state; no store lookup is made.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.tokens import TokenSigner


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_claims(request: Request) -> dict | None:
    """Return verified access-token claims, or None. Never raises."""
    token = _bearer_token(request)
    if not token:
        return None
    signer: TokenSigner = request.app.state.token_signer
    return signer.verify(token)


def get_current_claims(request: Request) -> dict:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: dict = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
