"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

One shared instance means every route counts against the same in-memory
store. Limits are keyed by client IP. They slow down credential stuffing from
one address; the per-account lockout in auth/guard.py covers slow attacks
spread over many addresses.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Limit string for credential-bearing endpoints, read from LOGIN_RATE_LIMIT."""
    return get_settings().login_rate_limit
