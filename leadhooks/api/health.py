"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - liveness (always 200 if the app is running)
- GET /health/ready - readiness: database, Redis, worker heartbeats
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from leadhooks.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"
WORKER_HEARTBEAT_KEYS = (
    "leadhooks:worker_health:retry_worker",
    "leadhooks:worker_health:webhook_worker",
)


@router.get("/health")
async def health_check():
    """Liveness - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness - database and Redis must answer. Worker heartbeats are reported
    but do not affect the status (the queue worker is optional).
    """
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
    }
    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "workers": await _check_workers(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _check_database(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _check_redis() -> bool:
    try:
        from leadhooks.utils.dedup import get_redis
        redis = await get_redis()
        await redis.ping()
        return True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return False


async def _check_workers() -> dict:
    """Last heartbeat per worker, or None when it has not reported recently."""
    try:
        from leadhooks.utils.dedup import get_redis
        redis = await get_redis()
        return {key.split(":")[-1]: await redis.get(key) for key in WORKER_HEARTBEAT_KEYS}
    except Exception as e:
        logger.debug("Worker heartbeat check failed: %s", str(e))
        return {key.split(":")[-1]: None for key in WORKER_HEARTBEAT_KEYS}
