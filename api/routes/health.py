"""
api/routes/health.py -- Liveness and readiness probes.

No authentication and no rate limit -- health checks from load balancers and
orchestrators must never be throttled or challenged.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response

from api.models import HealthResponse, ReadinessResponse

router = APIRouter()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Liveness: the process is up and serving requests."""
    return HealthResponse(timestamp=_now_iso())


@router.get("/health/ready", response_model=ReadinessResponse)
def ready(request: Request, response: Response) -> ReadinessResponse:
    """Readiness: the database and the cache both answer.

    Returns 503 with the per-dependency results when either check fails, so
    an orchestrator can hold traffic until both are reachable.
    """
    checks = {
        "database": request.app.state.user_store.ping(),
        "redis": request.app.state.cache.ping(),
    }
    all_healthy = all(checks.values())
    if not all_healthy:
        response.status_code = 503
    return ReadinessResponse(
        status="ready" if all_healthy else "not ready",
        checks=checks,
        timestamp=_now_iso(),
    )
