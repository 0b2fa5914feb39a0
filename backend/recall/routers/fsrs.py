"""
FSRS Scheduling API Router

Per-learner endpoints of the scheduling core.

Endpoints:
- POST /api/learners/{learner_id}/fsrs/reviews - Record a review
- GET /api/learners/{learner_id}/fsrs/queue - Interleaved practice queue
- GET /api/learners/{learner_id}/fsrs/queue/initial - Due and new items, not interleaved
- GET /api/learners/{learner_id}/fsrs/due-cards - Cards due now with content
- GET /api/learners/{learner_id}/fsrs/candidates - Random well-known cards
- GET /api/learners/{learner_id}/fsrs/candidates/suggest-count - Advisory section size
- GET /api/learners/{learner_id}/fsrs/stats - Statistics and review forecast
- POST /api/learners/{learner_id}/fsrs/decks/{deck_id}/initialize - Assign deck (job)
- DELETE /api/learners/{learner_id}/fsrs/decks/{deck_id} - Revoke deck
- POST /api/learners/{learner_id}/fsrs/rebuild-cache - Rebuild state cache (job)
- POST /api/learners/{learner_id}/fsrs/optimize-parameters - Fit parameters (job)

Domain errors (unknown learner, uninitialized card, rebuild in progress, ...)
are raised as ServiceErrors and rendered by the error handling middleware.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.base import get_db
from recall.models.learning import (
    CandidatePredicate,
    CardContent,
    CardStateResponse,
    DueCardResponse,
    InitialQueueResponse,
    JobResponse,
    LearnerCardStats,
    QueueConfig,
    QueueResponse,
    QueueScope,
    ReviewRequest,
)
from recall.services.learning import SpacedRepService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/learners/{learner_id}/fsrs", tags=["fsrs"])


# ===========================================
# Dependency Injection
# ===========================================


async def get_spaced_rep_service(
    db: AsyncSession = Depends(get_db),
) -> SpacedRepService:
    """Get spaced repetition service."""
    return SpacedRepService(db)


def get_queue_scope(
    deck_id: Optional[str] = Query(None, description="Restrict to one deck"),
    card_ids: Optional[list[str]] = Query(None, description="Restrict to these cards"),
) -> QueueScope:
    return QueueScope(deck_id=deck_id, card_ids=card_ids)


def get_queue_config(
    new_count: Optional[int] = Query(None, ge=0, description="Maximum new cards"),
    max_due: Optional[int] = Query(None, ge=0, description="Maximum due cards"),
    min_due: Optional[int] = Query(
        None, ge=0, description="Top up with cards due later today below this count"
    ),
) -> QueueConfig:
    overrides = {"new_count": new_count, "max_due": max_due, "min_due": min_due}
    return QueueConfig(**{k: v for k, v in overrides.items() if v is not None})


def get_candidate_predicate(
    min_retrievability: Optional[float] = Query(None, ge=0.0, le=1.0),
    confident_horizon_days: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=200),
) -> CandidatePredicate:
    overrides = {
        "min_retrievability": min_retrievability,
        "confident_horizon_days": confident_horizon_days,
        "limit": limit,
    }
    return CandidatePredicate(**{k: v for k, v in overrides.items() if v is not None})


# ===========================================
# Reviews & Queues
# ===========================================


@router.post("/reviews", response_model=CardStateResponse)
async def record_review(
    learner_id: str,
    request: ReviewRequest,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> CardStateResponse:
    """
    Record a review and reschedule the card.

    Rating: 1=Again, 2=Hard, 3=Good, 4=Easy. The card must have been
    initialized for the learner (deck assigned).
    """
    return await service.record_review(
        learner_id, request.card_id, request.rating, request.context
    )


@router.get("/queue", response_model=QueueResponse)
async def get_queue(
    learner_id: str,
    scope: QueueScope = Depends(get_queue_scope),
    config: QueueConfig = Depends(get_queue_config),
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> QueueResponse:
    """
    Get an ordered practice queue.

    New cards are spread evenly among due cards. An empty queue means the
    learner has nothing left to practice in scope.
    """
    return await service.assemble_queue(learner_id, scope, config)


@router.get("/queue/initial", response_model=InitialQueueResponse)
async def get_initial_queue(
    learner_id: str,
    scope: QueueScope = Depends(get_queue_scope),
    config: QueueConfig = Depends(get_queue_config),
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> InitialQueueResponse:
    """Get due and new items separately, before interleaving."""
    return await service.get_initial_queue(learner_id, scope, config)


@router.get("/due-cards", response_model=list[DueCardResponse])
async def get_due_cards(
    learner_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> list[DueCardResponse]:
    """Cards due now with content. Empty unless the learner is active."""
    return await service.get_due_cards(learner_id)


@router.get("/candidates", response_model=list[CardContent])
async def get_candidates(
    learner_id: str,
    predicate: CandidatePredicate = Depends(get_candidate_predicate),
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> list[CardContent]:
    """Random sample of well-known cards for recall practice."""
    return await service.get_candidates(learner_id, predicate)


@router.get("/candidates/suggest-count")
async def suggest_candidate_count(
    learner_id: str,
    predicate: CandidatePredicate = Depends(get_candidate_predicate),
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> dict[str, int]:
    """Advisory number of cards for a recall practice section."""
    return {"suggested_count": await service.suggest_candidate_count(learner_id, predicate)}


@router.get("/stats", response_model=LearnerCardStats)
async def get_stats(
    learner_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> LearnerCardStats:
    """Card counts by state, averages, due counts and review forecast."""
    return await service.get_stats(learner_id)


# ===========================================
# Assignment Lifecycle
# ===========================================


@router.post(
    "/decks/{deck_id}/initialize", response_model=JobResponse, status_code=202
)
async def initialize_deck(
    learner_id: str,
    deck_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> JobResponse:
    """Assign a deck and create NEW card states for its cards (deferred)."""
    return await service.request_initialization(learner_id, deck_id)


@router.delete("/decks/{deck_id}")
async def revoke_deck(
    learner_id: str,
    deck_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> dict[str, int]:
    """Unassign a deck and drop its card states. Review history is kept."""
    return {"rows_deleted": await service.revoke_deck(learner_id, deck_id)}


# ===========================================
# Maintenance
# ===========================================


@router.post("/rebuild-cache", response_model=JobResponse, status_code=202)
async def rebuild_cache(
    learner_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> JobResponse:
    """Regenerate the learner's card states from review history (deferred)."""
    return await service.request_rebuild(learner_id)


@router.post("/optimize-parameters", response_model=JobResponse, status_code=202)
async def optimize_parameters(
    learner_id: str,
    service: SpacedRepService = Depends(get_spaced_rep_service),
) -> JobResponse:
    """
    Fit learner-specific FSRS parameters (deferred).

    Skipped with fewer than the minimum number of reviews. A successful run
    queues a cache rebuild.
    """
    return await service.request_optimization(learner_id)
