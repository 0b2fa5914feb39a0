"""
Jobs API Router

Endpoints:
- GET /api/jobs/{job_id} - Poll a deferred operation (rebuild, optimize, initialize)
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.base import get_db
from recall.models.learning import JobResponse
from recall.services.learning.jobs import JobService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


async def get_job_service(db: AsyncSession = Depends(get_db)) -> JobService:
    """Get job service."""
    return JobService(db)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    jobs: JobService = Depends(get_job_service),
) -> JobResponse:
    """
    Get a job handle.

    Status moves PENDING → RUNNING → COMPLETED | FAILED | SKIPPED. Completed
    and skipped jobs carry a result payload, failed jobs an error message.
    """
    return JobResponse.model_validate(await jobs.get_job(job_id))
