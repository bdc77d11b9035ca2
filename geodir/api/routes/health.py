"""Health check endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from geodir import __version__
from geodir.db.client import get_db_session
from geodir.kernel.time import utc_now

router = APIRouter()
logger = structlog.get_logger()

_startup_time: datetime = utc_now()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the service is running.
    """
    now = utc_now()
    return {
        "status": "healthy",
        "service": "geodir",
        "version": __version__,
        "timestamp": now.isoformat(),
        "uptime_seconds": (now - _startup_time).total_seconds(),
    }


@router.get("/ready")
async def readiness_check(request: Request, response: Response):
    """
    Readiness check endpoint.
    Verifies Postgres is reachable and reports the subscription index.
    """
    checks = {"postgres": False}
    try:
        async with get_db_session() as session:
            await session.execute(text("SELECT 1"))
            checks["postgres"] = True
    except Exception as e:
        logger.warning("PostgreSQL health check failed", error=str(e))

    services = getattr(request.app.state, "services", None)
    payload = {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "timestamp": utc_now().isoformat(),
    }
    if services is not None:
        snapshot = services.registry.snapshot()
        payload["subscription_index"] = {"size": snapshot.size, "version": snapshot.version}
        payload["dispatcher_running"] = services.dispatcher.running

    if not all(checks.values()):
        response.status_code = 503
    return payload


@router.get("/live")
async def liveness_check():
    """
    Liveness check.
    Returns 200 if the process is alive.
    """
    return {"status": "alive"}
