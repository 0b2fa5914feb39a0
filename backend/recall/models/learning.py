"""
Scheduling Core API Models (Pydantic)

Input/output schemas for the scheduling core:
- Review recording (context, resulting card state)
- Practice queue assembly (scope, quotas, items)
- Candidate selection predicate
- Rebuild / optimization results and job handles
- Per-learner statistics and review forecast

ARCHITECTURE NOTE:
    This file contains PYDANTIC models for validation.
    There is a corresponding SQLAlchemy file: recall/db/models_learning.py

    Data flows: Caller → Pydantic → Service → SQLAlchemy → Database
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from recall.config import settings
from recall.enums.learning import (
    CardState,
    JobStatus,
    JobType,
    OptimizationStatus,
    Rating,
    ReviewType,
)
from recall.models.base import StrictRequest, StrictResponse


# ===========================================
# Review Recording
# ===========================================


class ReviewContext(StrictRequest):
    """
    Context attached to a review.

    Recorded on the review event for audit and analytics. It never influences
    scheduling.
    """

    session_id: Optional[str] = Field(None, description="Practice session id")
    review_type: ReviewType = Field(
        ReviewType.VOCABULARY, description="Exercise family producing the review"
    )
    response_time_ms: Optional[int] = Field(
        None, ge=0, description="Response latency in milliseconds"
    )


class ReviewRequest(StrictRequest):
    """Request body for recording one review."""

    card_id: str = Field(..., min_length=1, description="Reviewed card")
    rating: Rating = Field(..., description="Rating (1=Again, 2=Hard, 3=Good, 4=Easy)")
    context: ReviewContext = Field(default_factory=ReviewContext)


class CardStateResponse(StrictResponse):
    """
    Cached scheduling state of one (learner, card) pair.

    Returned by record_review and by every read of the cache.
    """

    learner_id: str
    card_id: str
    state: CardState
    stability: float
    difficulty: float
    due: datetime
    last_reviewed: Optional[datetime] = None
    repetitions: int = 0
    lapses: int = 0
    scheduled_days: int = 0


class CardContent(StrictResponse):
    """Card content joined onto scheduling rows."""

    id: str
    deck_id: str
    position: int = 0
    front: str
    back: str


class DueCardResponse(CardStateResponse):
    """A due cache row with its card content."""

    card: CardContent


# ===========================================
# Practice Queues
# ===========================================


class QueueScope(StrictRequest):
    """
    Restricts queue assembly to part of a learner's cards.

    Both filters are optional and combine with AND. An empty scope means all
    of the learner's cards.
    """

    deck_id: Optional[str] = None
    card_ids: Optional[list[str]] = None


class QueueConfig(StrictRequest):
    """Quotas for one assembled queue."""

    new_count: int = Field(
        default_factory=lambda: settings.QUEUE_NEW_COUNT,
        ge=0,
        description="Maximum new cards introduced",
    )
    max_due: int = Field(
        default_factory=lambda: settings.QUEUE_MAX_DUE,
        ge=0,
        description="Maximum due cards fetched",
    )
    min_due: int = Field(
        default_factory=lambda: settings.QUEUE_MIN_DUE,
        ge=0,
        description="Top up with cards due later today below this count",
    )


class QueueItem(StrictResponse):
    """One card of a practice queue."""

    card_id: str
    state: CardState
    due: datetime
    is_new: bool


class InitialQueueResponse(StrictResponse):
    """Due and new items before interleaving."""

    due_items: list[QueueItem] = Field(default_factory=list)
    new_items: list[QueueItem] = Field(default_factory=list)


class QueueResponse(StrictResponse):
    """
    Ordered practice queue.

    An empty queue means the learner has nothing left to practice in scope.
    """

    items: list[QueueItem] = Field(default_factory=list)
    due_count: int = 0
    new_count: int = 0

    @property
    def is_complete(self) -> bool:
        return not self.items


# ===========================================
# Candidate Selection
# ===========================================


class CandidatePredicate(StrictRequest):
    """
    Selects well-known cards for recall-style practice (e.g. listening).

    A reviewed card qualifies when its modeled retrievability is at least
    min_retrievability, or when its due date is more than
    confident_horizon_days away.
    """

    min_retrievability: float = Field(
        default_factory=lambda: settings.CANDIDATE_RETRIEVABILITY_THRESHOLD,
        ge=0.0,
        le=1.0,
    )
    confident_horizon_days: int = Field(
        default_factory=lambda: settings.CANDIDATE_CONFIDENT_HORIZON_DAYS, ge=0
    )
    limit: int = Field(default_factory=lambda: settings.CANDIDATE_LIMIT, ge=1)


# ===========================================
# Maintenance Results
# ===========================================


class RebuildResult(StrictResponse):
    """Outcome of a cache rebuild."""

    learner_id: str
    rows_rebuilt: int
    rows_replayed: int
    rows_baseline: int


class OptimizationResult(StrictResponse):
    """Outcome of a parameter optimization run."""

    learner_id: str
    status: OptimizationStatus
    message: str
    review_count: int = 0
    version: Optional[int] = None
    weights: Optional[list[float]] = None


class InitializationResult(StrictResponse):
    """Outcome of initializing card states for an assigned deck."""

    learner_id: str
    deck_id: str
    cards_initialized: int


class JobResponse(StrictResponse):
    """Job handle for a deferred operation."""

    id: str
    job_type: JobType
    status: JobStatus
    payload: dict[str, Any] = Field(default_factory=dict)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ===========================================
# Statistics
# ===========================================


class ReviewForecast(BaseModel):
    """
    Forecast of upcoming reviews.

    Buckets are mutually exclusive and use UTC calendar days.
    """

    overdue: int = 0
    today: int = 0
    tomorrow: int = 0
    this_week: int = 0
    later: int = 0


class LearnerCardStats(BaseModel):
    """
    Aggregate scheduling metrics for one learner.

    Average stability/difficulty only cover REVIEW rows; NEW rows carry
    baseline values that would skew them.
    """

    learner_id: str
    total_cards: int = 0
    cards_by_state: dict[str, int] = Field(
        default_factory=dict, description="Count per CardState"
    )
    avg_stability: float = 0.0
    avg_difficulty: float = 0.0
    due_today: int = 0
    overdue: int = 0
    review_forecast: ReviewForecast = Field(default_factory=ReviewForecast)
