"""
Health API Router

Endpoints:
- GET /api/health - Liveness: the process answers
- GET /api/health/detailed - Store and job worker status
- GET /api/health/ready - Readiness: the store answers

Reviews and queues only need the store. Missing Celery workers degrade the
detailed status (rebuild/optimize jobs would sit PENDING) without making the
service unready.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from recall.config import settings
from recall.db.base import get_db
from recall.services.queue import get_queue_stats

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/health", tags=["health"])


async def _check_store(db: AsyncSession) -> dict:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Store health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


async def _check_workers() -> dict:
    try:
        # inspect() waits on broker replies
        stats = await asyncio.to_thread(get_queue_stats)
    except Exception as e:
        logger.warning(f"Worker health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy" if stats["workers"] else "no_workers", **stats}


@router.get("")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


@router.get("/detailed")
async def detailed_health_check(db: AsyncSession = Depends(get_db)):
    """Status of the store and the job workers; degraded if either is down."""
    dependencies = {"postgres": await _check_store(db), "celery": await _check_workers()}
    degraded = any(dep["status"] != "healthy" for dep in dependencies.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "service": settings.APP_NAME,
        "dependencies": dependencies,
    }


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    store = await _check_store(db)
    if store["status"] != "healthy":
        return JSONResponse(status_code=503, content={"status": "not_ready", **store})
    return {"status": "ready"}
