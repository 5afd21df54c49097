"""
Shared slowapi limiter

SlowAPIMiddleware applies API_RATE_LIMIT to every route; routes decorated
with `@limiter.limit(...)` use their own limit instead.
Decorated endpoints must take a `request: Request` argument.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from config.config import API_RATE_LIMIT

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)
