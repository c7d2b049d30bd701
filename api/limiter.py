"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware), api/routes/v1/auth.py and
web/routes.py (to limit the credential endpoints with @limiter.limit()).

A single shared instance means the API login and the web form login draw
from the same per-IP counter, so an attacker cannot double their guessing
budget by alternating between the two.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current LOGIN_RATE_LIMIT, read at request time so tests can relax it."""
    return get_settings().login_rate_limit
