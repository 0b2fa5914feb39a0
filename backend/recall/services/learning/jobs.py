"""
Job Handles

Deferred operations (cache rebuild, parameter optimization, card-state
initialization) are tracked by a row in `jobs`. Requesting an operation
creates the row, commits it, and hands its id to the job runner; callers
poll the row for the outcome.

The runner is injectable. By default jobs are dispatched to the Celery
worker (see recall.services.tasks.run_job).

Usage:
    jobs = JobService(db)
    job = await jobs.create_job(JobType.REBUILD_FSRS_CACHE, {"learner_id": lid})

    # Later
    job = await jobs.get_job(job.id)
    if JobStatus(job.status).is_terminal:
        ...
"""

import logging
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import Job
from recall.enums.learning import JobStatus, JobType
from recall.services.learning.errors import NotFoundError

logger = logging.getLogger(__name__)

# Called with the id and type of a committed job
Dispatcher = Callable[[str, JobType], None]


def celery_dispatcher(job_id: str, job_type: JobType) -> None:
    """Queue a job on the Celery worker."""
    # Imported lazily: tasks imports this module
    from recall.services.tasks import run_job, run_optimization_job

    if job_type == JobType.OPTIMIZE_FSRS_PARAMS:
        run_optimization_job.delay(job_id)
    else:
        run_job.delay(job_id)


class JobService:
    """Creates, dispatches and updates job handles."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[Dispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher or celery_dispatcher

    async def create_job(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        dispatch: bool = True,
    ) -> Job:
        """
        Persist a PENDING job and hand it to the runner.

        The row is committed before dispatch so the worker can always load it.

        Args:
            job_type: Operation to run
            payload: Operation arguments (JSON-serializable)
            dispatch: Hand the job to the runner right away

        Returns:
            The committed Job row
        """
        job = Job(
            job_type=job_type.value,
            status=JobStatus.PENDING.value,
            payload=payload,
        )
        self.db.add(job)
        await self.db.commit()

        logger.info(f"Created job {job.id} ({job_type.value}) with payload {payload}")
        if dispatch:
            self.dispatcher(job.id, job_type)
        return job

    async def get_job(self, job_id: str) -> Job:
        job = await self.db.get(Job, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found", details={"job_id": job_id})
        return job

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Job:
        """Move a job to a new status and commit."""
        job = await self.get_job(job_id)
        job.status = status.value
        if result is not None:
            job.result = result
        if error is not None:
            job.error = error
        await self.db.commit()

        if status == JobStatus.FAILED:
            logger.error(f"Job {job_id} ({job.job_type}) failed: {error}")
        elif status == JobStatus.SKIPPED:
            logger.warning(f"Job {job_id} ({job.job_type}) skipped: {result}")
        else:
            logger.info(f"Job {job_id} ({job.job_type}) is {status.value}")
        return job
