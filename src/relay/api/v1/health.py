"""Health check endpoints.

Liveness (/health) reports only that the process is up. Readiness
(/health/ready) checks PostgreSQL and Redis and reports which engine
services finished wiring at startup.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.relay.config import get_settings
from src.relay.core.database import get_engine
from src.relay.core.redis import get_redis_pool

router = APIRouter(tags=["health"])

_SERVICES = ("orchestrator", "provider_router", "escalation_workflow", "state_tracker", "analytics")


@router.get("/health")
async def health_check():
    """Basic liveness check; no dependencies are touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    try:
        redis = get_redis_pool()
        if not await redis.ping():
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness: 200 when the database, Redis, and the orchestrator are available."""
    checks = await _check_dependencies()
    services = {
        name: getattr(request.app.state, name, None) is not None for name in _SERVICES
    }
    ready = (
        checks["database"] == "ok"
        and checks["redis"] == "ok"
        and services["orchestrator"]
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "services": services,
        },
    )
