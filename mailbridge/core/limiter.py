"""Rate limiter instance for SlowAPI.

Shared so both main (app.state.limiter) and route modules can use the
same instance without circular imports.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

# Single source of truth for rate limit strings and decorators.
SEND_LIMIT = "60/minute"

limit_send = limiter.limit(SEND_LIMIT)
