"""
api/main.py -- FastAPI application entry point for the Weight Tracker API.

Run with:      uvicorn asgi:app --reload
               weight-tracker            (console script -> asgi.main)

Middleware stack (outermost to innermost):
  1. log_requests        -- one log line per request with latency
  2. security_headers    -- nosniff / frame / referrer headers on every response
  3. CORSMiddleware      -- adds CORS headers for the configured browser origin
  4. GZipMiddleware      -- compresses responses of 1 KB (1024 bytes) or more
  5. SlowAPIMiddleware   -- enforces per-route rate limits from api.limiter

Lifespan opens the user store and the Redis cache on startup and closes both
on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse
from api.routes.auth import router as auth_router
from api.routes.health import router as health_router
from api.routes.users import router as users_router
from auth.store import UserStore
from cache.store import RedisCache
from core.config import get_settings

_settings = get_settings()

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("weighttracker.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. An unreachable Redis is logged but does not block startup --
    the cache is optional and /health/ready reports it.
    """
    logger.info("Weight Tracker API starting up (debug=%s)", _settings.debug)
    app.state.user_store = UserStore(_settings.database_url)
    logger.info("User store initialized")

    app.state.cache = RedisCache(
        host=_settings.redis_host,
        port=_settings.redis_port,
        db=_settings.redis_db,
        ttl=_settings.cache_ttl_seconds,
    )
    if app.state.cache.ping():
        logger.info("Redis connected at %s:%d", _settings.redis_host, _settings.redis_port)
    else:
        logger.warning("Redis unavailable -- serving without cache")

    yield

    app.state.cache.close()
    app.state.user_store.close()
    logger.info("Weight Tracker API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Weight Tracker API",
    description="Weight-loss tracking: accounts, profiles and token-based auth.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST registration is the
# outermost layer. Registered innermost-first: SlowAPI -> GZip -> CORS, then
# the two @app.middleware("http") functions below wrap all three.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; wall-clock time around call_next gives latency per response.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(health_router, tags=["Health"])
app.include_router(auth_router, tags=["Auth"])
app.include_router(users_router, tags=["Users"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the ErrorResponse envelope: {success: false, error}.
# ---------------------------------------------------------------------------

_STATUS_CODES: dict[int, tuple[str, str]] = {
    404: ("NOT_FOUND", "The requested resource was not found"),
    405: ("METHOD_NOT_ALLOWED", "Method not allowed"),
}


def _error_response(status_code: int, detail: ErrorDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
        headers=headers,
    )


def _retry_after(request: Request) -> int:
    """Seconds until the window of the limit that just failed resets.

    slowapi records the failed limit and its storage key on
    request.state.view_rate_limit before raising RateLimitExceeded.
    """
    current = getattr(request.state, "view_rate_limit", None)
    if current is None:
        return 60
    item, args = current
    reset_at, _remaining = limiter.limiter.get_window_stats(item, *args)
    return max(1, int(reset_at - time.time()) + 1)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After when a rate limit is exceeded.

    Sync on purpose: SlowAPIMiddleware calls this handler directly and does
    not await it.
    """
    return _error_response(
        429,
        ErrorDetail(code="RATE_LIMITED", message=f"Too many requests: {exc.detail}"),
        headers={"Retry-After": str(_retry_after(request))},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return _error_response(
        400,
        ErrorDetail(code="VALIDATION_ERROR", message="Invalid input", details=details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a structured dict, use it directly as the error field
    rather than stringifying it. Router-level 404/405 carry a plain string.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=exc.headers,
        )
    code, message = _STATUS_CODES.get(exc.status_code, (f"HTTP_{exc.status_code}", str(exc.detail)))
    return _error_response(exc.status_code, ErrorDetail(code=code, message=message), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. In production the client receives a
    generic message; in debug mode the exception text is included to speed up
    local development.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    message = str(exc) if _settings.debug else "An error occurred"
    return _error_response(500, ErrorDetail(code="INTERNAL_SERVER_ERROR", message=message))
