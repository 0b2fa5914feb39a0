"""
Celery application for the scheduling core's deferred jobs.

Two queues, split by cost so a long parameter fit never delays a rebuild:
- fsrs_maintenance: cache rebuilds and card-state initialization
- fsrs_optimization: parameter fitting (CPU-bound, minutes per learner)

The jobs table is the durable record of every run; Celery results are kept
only briefly.

Usage:
    celery -A recall.services.queue worker -Q fsrs_maintenance,fsrs_optimization -l info
"""

from collections import Counter

from celery import Celery

from recall.config import settings

MAINTENANCE_QUEUE = "fsrs_maintenance"
OPTIMIZATION_QUEUE = "fsrs_optimization"

RUN_JOB_TASK = "recall.services.tasks.run_job"
RUN_OPTIMIZATION_TASK = "recall.services.tasks.run_optimization_job"

celery_app = Celery(
    "recall",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["recall.services.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        RUN_JOB_TASK: {"queue": MAINTENANCE_QUEUE},
        RUN_OPTIMIZATION_TASK: {"queue": OPTIMIZATION_QUEUE},
    },
    task_soft_time_limit=settings.JOB_SOFT_TIME_LIMIT,
    task_time_limit=settings.JOB_TIME_LIMIT,
    task_annotations={
        RUN_OPTIMIZATION_TASK: {
            "soft_time_limit": settings.OPTIMIZATION_SOFT_TIME_LIMIT,
            "time_limit": settings.OPTIMIZATION_TIME_LIMIT,
        },
    },
    result_expires=settings.CELERY_RESULT_EXPIRES,
    # One job at a time per worker process; a redelivered job is safe to rerun
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


def get_queue_stats() -> dict:
    """
    Snapshot of running and waiting jobs across workers.

    Blocks on broadcast replies from the workers; call it off the event loop.

    Returns:
        Dict with task counts, per-queue active counts and worker names
    """
    inspect = celery_app.control.inspect()
    active = inspect.active() or {}
    reserved = inspect.reserved() or {}

    per_queue = Counter(
        task.get("delivery_info", {}).get("routing_key", "unknown")
        for tasks in active.values()
        for task in tasks
    )
    return {
        "active_tasks": sum(per_queue.values()),
        "queued_tasks": sum(len(tasks) for tasks in reserved.values()),
        "active_by_queue": {
            queue: per_queue.get(queue, 0)
            for queue in (MAINTENANCE_QUEUE, OPTIMIZATION_QUEUE)
        },
        "workers": sorted(active),
    }
