"""API routers."""

from recall.routers import fsrs, health, jobs

__all__ = ["fsrs", "health", "jobs"]
