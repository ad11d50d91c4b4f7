"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to throttle login attempts with @limiter.limit()).

All routes must share this one instance: each Limiter keeps its own
in-memory counter store, so a second instance would never see the first
one's hits.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Login limit string, read from settings at request time (LOGIN_RATE_LIMIT)."""
    return get_settings().login_rate_limit
