"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules that apply per-IP limits with @limiter.limit().

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

This limiter keys on client IP and protects unauthenticated endpoints
(login, signup). Per-user application limits such as the email-change
request quota go through services/ratelimit.py instead, which shares the
configured storage with every process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(key_func=get_remote_address, storage_uri=_settings.ratelimit_storage_uri or "memory://")

LOGIN_RATE_LIMIT = _settings.login_rate_limit
