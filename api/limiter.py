"""
api/limiter.py -- Per-client rate limiting for the credential endpoints.

One Limiter serves the whole app: api/main.py mounts it (SlowAPIMiddleware +
app.state.limiter) and api/routes/auth.py decorates POST /auth/login and
POST /auth/register with @limiter.limit(). Counters are keyed by client IP.

RATE_LIMIT_STORAGE_URI selects where counters live. The default memory://
is per-process; point it at Redis (redis://host:6379/1) when several API
processes must share one budget per client.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=get_settings().rate_limit_storage_uri,
    headers_enabled=False,
)
