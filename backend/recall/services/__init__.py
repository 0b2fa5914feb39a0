"""Services package for scheduling, background jobs and the Celery queue."""

from recall.services.queue import celery_app

__all__ = ["celery_app"]
