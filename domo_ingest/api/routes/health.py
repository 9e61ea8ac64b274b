"""Health check API routes.

Provides:
- GET /health: liveness for the load balancer
- GET /health/ingestion: recent pipeline error summary and circuit breaker states
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Query, status

from domo_ingest import __version__
from domo_ingest.core.circuit_breaker import breaker_states
from domo_ingest.core.error_tracker import ErrorTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()


@router.get("", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Lightweight check: 200 while the process is running."""
    return {"status": "healthy"}


@router.get("/ingestion", status_code=status.HTTP_200_OK)
async def ingestion_health(
    period_seconds: int = Query(3600, ge=1, le=86400),
) -> dict[str, Any]:
    """Pipeline error counts and per-table breaker states.

    Status is "degraded" when any breaker is not closed.
    """
    breakers = breaker_states()
    degraded = any(state != "closed" for state in breakers.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "version": __version__,
        "errors": ErrorTracker.get_instance().get_error_summary(period_seconds),
        "recent_errors": ErrorTracker.get_instance().get_recent_errors(limit=10),
        "circuit_breakers": breakers,
    }
