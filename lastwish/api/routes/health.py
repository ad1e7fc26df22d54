"""Health check endpoints for the Last Wish API.

Liveness probe for the container platform and the scheduler host.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from lastwish.config import APP_VERSION, CRON_SECRET, SMTP_PASSWORD, SMTP_USER
from lastwish.infrastructure.database import get_pool_stats
from lastwish.observability.telemetry import get_latency_stats

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns service status, version, and configuration readiness (presence
    checks only; does not open an SMTP connection).
    """
    return {
        "status": "healthy",
        "service": "Last Wish API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "smtp_configured": bool(SMTP_USER and SMTP_PASSWORD),
        "cron_secret_configured": bool(CRON_SECRET),
    }


@router.get("/health/db")
def database_health() -> dict[str, Any]:
    """Connection pool usage and scheduled-run latency for this process"""
    return {
        "status": "healthy",
        "pool": get_pool_stats(),
        "run_latency": get_latency_stats("last_wish.run"),
    }
