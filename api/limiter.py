"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that throttle unauthenticated endpoints (login, password reset) with
@limiter.limit().

Using a single shared instance ensures all routes share the same in-memory
counter store. Limits are per client IP. The limit strings are read from
Settings on every request (slowapi accepts a callable), so deployments and
tests can tune them without re-importing the routes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def password_limit() -> str:
    return get_settings().password_rate_limit
