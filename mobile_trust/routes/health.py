"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from mobile_trust.config import settings
from mobile_trust.db.pool import db_health_check
from mobile_trust.infrastructure.observability.logging import log_health_check

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "mobile-trust"}


@router.get("/readyz")
async def readyz():
    """Readiness check: the database pool must answer."""
    checks = {}

    t0 = time.time()
    db_health = await db_health_check()
    is_healthy = db_health.get("healthy", False)
    latency_ms = round((time.time() - t0) * 1000, 1)

    checks["database"] = {"ok": is_healthy, "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if "warnings" in db_health:
        checks["database"]["warnings"] = db_health["warnings"]
    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    log_health_check("database", is_healthy, latency_ms, error=checks["database"].get("error"))

    body = {
        "overall_ok": is_healthy,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if is_healthy else 503, content=body)
