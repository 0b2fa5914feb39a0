"""
Centralized enum definitions for the application.

Usage:
    from recall.enums import CardState, Rating

    # Or import from the specific module
    from recall.enums.learning import JobStatus
"""

from recall.enums.learning import (
    CardState,
    JobStatus,
    JobType,
    LearnerStatus,
    OptimizationStatus,
    Rating,
    ReviewType,
)

__all__ = [
    "CardState",
    "JobStatus",
    "JobType",
    "LearnerStatus",
    "OptimizationStatus",
    "Rating",
    "ReviewType",
]
