"""Health check API router."""

import asyncio
import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from crm_assistant.infra.database import get_db_session
from crm_assistant.infra.metrics import get_metrics_response
from crm_assistant.infra.redis_client import get_redis

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_database() -> None:
    with get_db_session() as session:
        session.execute(text("SELECT 1"))


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "crm-assistant",
        "version": "1.0.0",
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe():
    """Readiness probe - checks database and Redis connectivity."""
    checks = {}
    try:
        await asyncio.to_thread(_check_database)
        checks["database"] = "ok"
    except Exception as e:
        logger.warning(f"Database readiness check failed: {e}")
        checks["database"] = "unavailable"
    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        logger.warning(f"Redis readiness check failed: {e}")
        checks["redis"] = "unavailable"

    if all(value == "ok" for value in checks.values()):
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
