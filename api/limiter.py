"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limit strings come from Settings and are resolved per request through the
callables below, so importing a route module never instantiates Settings.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """LOGIN_RATE_LIMIT -- applied to login, register and setup."""
    return get_settings().login_rate_limit


def otp_limit() -> str:
    """OTP_RATE_LIMIT -- applied to OTP store and verify."""
    return get_settings().otp_rate_limit
