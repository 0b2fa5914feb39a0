"""
Celery Task Definitions

Runs deferred scheduling-core operations identified by a job handle:
- initialize_card_states: assign a deck and create NEW rows for its cards
- rebuild_fsrs_cache: regenerate the learner's state cache from history
- optimize_fsrs_params: fit new parameters, then queue a rebuild

Job lifecycle:
    PENDING → RUNNING → COMPLETED | FAILED | SKIPPED

    A job is SKIPPED when its learner is not eligible (not active or
    archived) or when optimization finds too little history. FAILED jobs
    carry the error message; the exception is re-raised so Celery records it
    too.

Retry Strategy:
    Uses tenacity for retry logic with exponential backoff. Only concurrency
    conflicts are retried (lock contention, serialization failures, a rebuild
    holding the learner lock); every other error fails the job at once.
    Rebuild and optimize defer all writes to one final transaction, so a
    retried attempt never sees partial effects of the previous one.

Queue Routing:
    Configured centrally in queue.py via `task_routes`:
    - run_job               → fsrs_maintenance queue
    - run_optimization_job  → fsrs_optimization queue (60 min timeout)

Usage:
    from recall.services.tasks import run_job

    run_job.delay(job_id)
"""

# =============================================================================
# Standard library imports
# =============================================================================
import asyncio
import logging
from typing import Any, Optional

# =============================================================================
# Third-party imports
# =============================================================================
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# =============================================================================
# Internal imports
# =============================================================================
from recall.config import settings
from recall.db.base import task_session_maker
from recall.enums.learning import JobStatus, JobType, OptimizationStatus
from recall.services.learning.assignments import DatabaseAssignmentProvider
from recall.services.learning.cache_rebuilder import CacheRebuilder
from recall.services.learning.jobs import Dispatcher, JobService
from recall.services.learning.errors import (
    ConcurrencyConflict,
    RebuildInProgressError,
)
from recall.services.learning.parameter_optimizer import ParameterOptimizer
from recall.services.learning.spaced_rep_service import SpacedRepService
from recall.services.queue import RUN_JOB_TASK, RUN_OPTIMIZATION_TASK, celery_app

logger = logging.getLogger(__name__)

# =============================================================================
# Retry configuration using tenacity
# =============================================================================

# Concurrency conflicts only; anything else is a real failure
conflict_retry = retry(
    stop=stop_after_attempt(settings.JOB_RETRY_ATTEMPTS),
    wait=wait_exponential(
        multiplier=settings.JOB_RETRY_MIN_WAIT,
        min=settings.JOB_RETRY_MIN_WAIT,
        max=settings.JOB_RETRY_MAX_WAIT,
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    retry=retry_if_exception_type((ConcurrencyConflict, RebuildInProgressError)),
    reraise=True,
)


# =============================================================================
# Job execution
# =============================================================================


@conflict_retry
async def _execute_job(
    session: AsyncSession,
    job_type: JobType,
    payload: dict[str, Any],
    jobs: JobService,
) -> tuple[JobStatus, dict[str, Any]]:
    """
    Run one job's operation.

    Returns:
        Final job status and the result payload
    """
    learner_id = payload["learner_id"]

    if job_type == JobType.INITIALIZE_CARD_STATES:
        result = await SpacedRepService(session).initialize_card_states(
            learner_id, payload["deck_id"]
        )
        return JobStatus.COMPLETED, result.model_dump(mode="json")

    if job_type == JobType.REBUILD_FSRS_CACHE:
        result = await CacheRebuilder(session).rebuild(learner_id)
        return JobStatus.COMPLETED, result.model_dump(mode="json")

    if job_type == JobType.OPTIMIZE_FSRS_PARAMS:
        result = await ParameterOptimizer(session).optimize(learner_id)
        output = result.model_dump(mode="json")
        if result.status == OptimizationStatus.SKIPPED:
            return JobStatus.SKIPPED, output

        # Cached states were computed with the old parameters
        rebuild = await jobs.create_job(
            JobType.REBUILD_FSRS_CACHE, {"learner_id": learner_id}
        )
        output["rebuild_job_id"] = rebuild.id
        return JobStatus.COMPLETED, output

    raise ValueError(f"Unknown job type: {job_type}")


async def _run_job_impl(
    job_id: str,
    dispatcher: Optional[Dispatcher] = None,
    session_maker=None,
) -> dict[str, Any]:
    """
    Internal async implementation shared by the Celery tasks.

    Args:
        job_id: Job handle to run
        dispatcher: Job runner for follow-up jobs (defaults to Celery)
        session_maker: Session factory (defaults to the NullPool task sessions)

    Returns:
        Dictionary with the job id, final status and result
    """
    session_maker = session_maker or task_session_maker

    async with session_maker() as session:
        jobs = JobService(session, dispatcher=dispatcher)
        job = await jobs.get_job(job_id)

        if JobStatus(job.status).is_terminal:
            logger.warning(f"Job {job_id} already finished ({job.status}), not re-running")
            return {"job_id": job_id, "status": job.status, "result": job.result}

        job_type = JobType(job.job_type)
        payload = dict(job.payload or {})
        learner_id = payload.get("learner_id")
        if not learner_id:
            await jobs.update_status(
                job_id, JobStatus.FAILED, error="Invalid payload: learner_id is required"
            )
            return {"job_id": job_id, "status": JobStatus.FAILED.value, "result": None}

        if not await DatabaseAssignmentProvider(session).is_eligible(learner_id):
            result = {"reason": f"Learner {learner_id} is not active"}
            await jobs.update_status(job_id, JobStatus.SKIPPED, result=result)
            return {"job_id": job_id, "status": JobStatus.SKIPPED.value, "result": result}

        await jobs.update_status(job_id, JobStatus.RUNNING)

        try:
            status, result = await _execute_job(session, job_type, payload, jobs)
        except Exception as e:
            await session.rollback()
            await jobs.update_status(job_id, JobStatus.FAILED, error=str(e))
            raise

        await jobs.update_status(job_id, status, result=result)
        return {"job_id": job_id, "status": status.value, "result": result}


# =============================================================================
# Celery tasks
# =============================================================================


@celery_app.task(name=RUN_JOB_TASK)
def run_job(job_id: str) -> dict[str, Any]:
    """
    Celery task running a rebuild or initialization job.

    Each task runs its own event loop via asyncio.run, with NullPool
    sessions so no connection outlives the loop.

    Args:
        job_id: Job handle created by JobService

    Returns:
        Dictionary with the job id, final status and result
    """
    return asyncio.run(_run_job_impl(job_id))


@celery_app.task(name=RUN_OPTIMIZATION_TASK)
def run_optimization_job(job_id: str) -> dict[str, Any]:
    """
    Celery task running a parameter optimization job.

    Routed to its own queue: fitting is CPU-heavy and can take minutes.
    A successful run queues a cache rebuild job.

    Args:
        job_id: Job handle created by JobService

    Returns:
        Dictionary with the job id, final status and result
    """
    return asyncio.run(_run_job_impl(job_id))
