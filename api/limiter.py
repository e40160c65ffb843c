"""
api/limiter.py -- Shared slowapi rate limiter instance.

Limits are keyed on the client IP. Counters live wherever
RATE_LIMIT_STORAGE_URI points: "memory://" is per-process, so a deployment
with several workers should point it at a shared backend (redis://...).

api/main.py mounts the middleware; api/routes/v1/auth.py applies the login
and forgot-password limits with @limiter.limit().
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)
