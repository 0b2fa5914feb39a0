"""
Spaced Repetition Service

Facade over the scheduling core. Exercise strategies (vocabulary, listening,
spelling, ...) and the HTTP layer talk to this class only; it wires the
recorder, queue assembler, candidate selector, assignment provider and job
handles together and applies learner eligibility to the read paths.

Usage:
    from recall.services.learning import SpacedRepService

    service = SpacedRepService(db_session)

    # Record a review
    state = await service.record_review(learner_id, card_id, Rating.GOOD)

    # Build a practice queue
    queue = await service.assemble_queue(learner_id, QueueScope(deck_id=deck_id))

    # Refresh the cache after parameters changed
    job = await service.request_rebuild(learner_id)
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol, Union

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.locks import acquire_learner_lock
from recall.db.models_learning import LearnerCardState
from recall.enums.learning import CardState, JobType
from recall.models.learning import (
    CandidatePredicate,
    CardContent,
    CardStateResponse,
    DueCardResponse,
    InitialQueueResponse,
    InitializationResult,
    JobResponse,
    LearnerCardStats,
    QueueConfig,
    QueueResponse,
    QueueScope,
    ReviewContext,
    ReviewForecast,
)
from recall.services.learning.assignments import DatabaseAssignmentProvider
from recall.services.learning.cache_rebuilder import CacheRebuilder
from recall.services.learning.candidate_selector import CandidateSelector
from recall.services.learning.errors import NotFoundError
from recall.services.learning.fsrs import create_memory_model
from recall.services.learning.jobs import Dispatcher, JobService
from recall.services.learning.memory_model import ModelFactory
from recall.services.learning.queue_assembler import QueueAssembler
from recall.services.learning.review_recorder import ReviewRecorder
from recall.services.learning.state_cache import StateCache

logger = logging.getLogger(__name__)


class ReviewCapability(Protocol):
    """
    What exercise strategies need from the scheduler.

    Strategies differ in how they present cards and grade answers, but all
    of them report a rating per card and ask for queues or candidates.
    """

    async def record_review(
        self,
        learner_id: str,
        card_id: str,
        rating: Any,
        context: Union[ReviewContext, dict, None] = None,
    ) -> CardStateResponse:
        ...

    async def assemble_queue(
        self,
        learner_id: str,
        scope: Optional[QueueScope] = None,
        config: Optional[QueueConfig] = None,
    ) -> QueueResponse:
        ...

    async def get_candidates(
        self,
        learner_id: str,
        predicate: Optional[CandidatePredicate] = None,
    ) -> list[CardContent]:
        ...


class SpacedRepService:
    """
    Scheduling core facade.

    Provides:
    - Review recording
    - Practice queues and due cards
    - Well-known candidates for recall practice
    - Statistics and review forecast
    - Deck assignment lifecycle (card-state initialization / revocation)
    - Deferred cache rebuilds and parameter optimization
    """

    def __init__(
        self,
        db: AsyncSession,
        model_factory: ModelFactory = create_memory_model,
        dispatcher: Optional[Dispatcher] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the service.

        Args:
            db: Async database session
            model_factory: Builds the memory model from learner parameters
            dispatcher: Job runner hand-off (defaults to the Celery worker)
            rng: Random source for candidate sampling
        """
        self.db = db
        self.assignments = DatabaseAssignmentProvider(db)
        self.cache = StateCache(db)
        self.rebuilder = CacheRebuilder(
            db, assignments=self.assignments, model_factory=model_factory
        )
        self.recorder = ReviewRecorder(db, model_factory=model_factory)
        self.queues = QueueAssembler(db)
        self.candidates = CandidateSelector(db, model_factory=model_factory, rng=rng)
        self.jobs = JobService(db, dispatcher=dispatcher)

    async def _require_learner(self, learner_id: str) -> None:
        if await self.assignments.get_learner(learner_id) is None:
            raise NotFoundError(
                f"Learner {learner_id} not found", details={"learner_id": learner_id}
            )

    # ------------------------------------------------------------------
    # Reviews and queues
    # ------------------------------------------------------------------

    async def record_review(
        self,
        learner_id: str,
        card_id: str,
        rating: Any,
        context: Union[ReviewContext, dict, None] = None,
    ) -> CardStateResponse:
        """
        Record a review. Not status-gated: a review in flight is always kept.
        """
        row = await self.recorder.record_review(learner_id, card_id, rating, context)
        return CardStateResponse.model_validate(row)

    async def get_initial_queue(
        self,
        learner_id: str,
        scope: Optional[QueueScope] = None,
        config: Optional[QueueConfig] = None,
    ) -> InitialQueueResponse:
        return await self.queues.get_initial_queue(learner_id, scope, config)

    async def assemble_queue(
        self,
        learner_id: str,
        scope: Optional[QueueScope] = None,
        config: Optional[QueueConfig] = None,
    ) -> QueueResponse:
        return await self.queues.assemble_queue(learner_id, scope, config)

    async def get_due_cards(self, learner_id: str) -> list[DueCardResponse]:
        """
        Every card due now with its content, most overdue first.

        Returns an empty list for learners that are not eligible (paused,
        completed, archived or unknown).
        """
        if not await self.assignments.is_eligible(learner_id):
            logger.debug(f"Learner {learner_id} is not eligible, no due cards")
            return []

        rows = await self.cache.due_rows_with_cards(learner_id, datetime.now(timezone.utc))
        return [DueCardResponse.model_validate(row) for row in rows]

    async def get_candidates(
        self,
        learner_id: str,
        predicate: Optional[CandidatePredicate] = None,
    ) -> list[CardContent]:
        """Random sample of well-known cards; empty for ineligible learners."""
        if not await self.assignments.is_eligible(learner_id):
            return []
        cards = await self.candidates.select_candidates(learner_id, predicate)
        return [CardContent.model_validate(card) for card in cards]

    async def suggest_candidate_count(
        self,
        learner_id: str,
        predicate: Optional[CandidatePredicate] = None,
    ) -> int:
        if not await self.assignments.is_eligible(learner_id):
            return 0
        return await self.candidates.suggest_max_count(learner_id, predicate)

    # ------------------------------------------------------------------
    # Assignment lifecycle
    # ------------------------------------------------------------------

    async def initialize_card_states(
        self, learner_id: str, deck_id: str
    ) -> InitializationResult:
        """
        Assign a deck and create rows for its cards.

        Cards the learner already has rows for are skipped, so this can be
        re-run safely after cards are added to the deck. Cards reviewed
        before (a deck revoked and assigned again) get their state replayed
        from history instead of a NEW row.
        """
        await self._require_learner(learner_id)
        try:
            await acquire_learner_lock(self.db, learner_id)
            await self.assignments.assign_deck(learner_id, deck_id)
            card_ids = await self.assignments.deck_card_ids(deck_id)
            created = await self.rebuilder.seed_rows(learner_id, card_ids)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Initialized {created} card states for learner {learner_id} "
            f"from deck {deck_id} ({len(card_ids)} cards in deck)"
        )
        return InitializationResult(
            learner_id=learner_id, deck_id=deck_id, cards_initialized=created
        )

    async def revoke_deck(self, learner_id: str, deck_id: str) -> int:
        """
        Unassign a deck and delete its cache rows. History is kept.

        Cards that remain assigned through another deck keep their rows.

        Returns:
            Number of cache rows deleted
        """
        await self._require_learner(learner_id)
        try:
            await acquire_learner_lock(self.db, learner_id)
            await self.assignments.revoke_deck(learner_id, deck_id)
            still_assigned = set(await self.assignments.assigned_card_ids(learner_id))
            revoked = [
                card_id
                for card_id in await self.assignments.deck_card_ids(deck_id)
                if card_id not in still_assigned
            ]
            deleted = await self.cache.delete_for_cards(learner_id, revoked)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Revoked deck {deck_id} from learner {learner_id}: {deleted} rows removed")
        return deleted

    # ------------------------------------------------------------------
    # Deferred maintenance
    # ------------------------------------------------------------------

    async def _request(self, job_type: JobType, payload: dict[str, Any]) -> JobResponse:
        await self._require_learner(payload["learner_id"])
        job = await self.jobs.create_job(job_type, payload)
        return JobResponse.model_validate(job)

    async def request_rebuild(self, learner_id: str) -> JobResponse:
        return await self._request(JobType.REBUILD_FSRS_CACHE, {"learner_id": learner_id})

    async def request_optimization(self, learner_id: str) -> JobResponse:
        """Fit new parameters; a successful run queues a rebuild by itself."""
        return await self._request(
            JobType.OPTIMIZE_FSRS_PARAMS, {"learner_id": learner_id}
        )

    async def request_initialization(self, learner_id: str, deck_id: str) -> JobResponse:
        return await self._request(
            JobType.INITIALIZE_CARD_STATES,
            {"learner_id": learner_id, "deck_id": deck_id},
        )

    async def get_job(self, job_id: str) -> JobResponse:
        return JobResponse.model_validate(await self.jobs.get_job(job_id))

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self, learner_id: str) -> LearnerCardStats:
        """
        Aggregate scheduling statistics for a learner.

        Statistics include:
        - Total card count
        - Cards grouped by lifecycle state
        - Average stability and difficulty (REVIEW rows only, NEW rows carry
          baseline values that would skew them)
        - Due today and overdue counts
        - Review forecast by UTC day bucket

        Args:
            learner_id: Learner

        Returns:
            LearnerCardStats

        Raises:
            NotFoundError: Unknown learner
        """
        await self._require_learner(learner_id)
        learner_filter = LearnerCardState.learner_id == learner_id

        total_result = await self.db.execute(
            select(func.count(LearnerCardState.id)).where(learner_filter)
        )
        total_cards = total_result.scalar() or 0

        state_result = await self.db.execute(
            select(LearnerCardState.state, func.count(LearnerCardState.id))
            .where(learner_filter)
            .group_by(LearnerCardState.state)
        )
        cards_by_state = {state: count for state, count in state_result.fetchall()}

        avg_result = await self.db.execute(
            select(
                func.avg(LearnerCardState.stability),
                func.avg(LearnerCardState.difficulty),
            ).where(learner_filter, LearnerCardState.state == CardState.REVIEW.value)
        )
        avg_row = avg_result.fetchone()

        forecast = await self._get_review_forecast(learner_id)

        return LearnerCardStats(
            learner_id=learner_id,
            total_cards=total_cards,
            cards_by_state=cards_by_state,
            avg_stability=avg_row[0] or 0.0,
            avg_difficulty=avg_row[1] or 0.0,
            due_today=forecast.today,
            overdue=forecast.overdue,
            review_forecast=forecast,
        )

    async def _count_rows_in_date_range(
        self,
        learner_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> int:
        """Count rows with due in [start, end). None means unbounded."""
        query = select(func.count(LearnerCardState.id)).where(
            LearnerCardState.learner_id == learner_id
        )
        if start is not None and end is not None:
            query = query.where(
                and_(LearnerCardState.due >= start, LearnerCardState.due < end)
            )
        elif start is not None:
            query = query.where(LearnerCardState.due >= start)
        elif end is not None:
            query = query.where(LearnerCardState.due < end)

        result = await self.db.execute(query)
        return result.scalar() or 0

    async def _get_review_forecast(self, learner_id: str) -> ReviewForecast:
        """
        Review workload by UTC calendar day.

        Buckets don't overlap: overdue (before today), today, tomorrow,
        this_week (days 3-7) and later.
        """
        now = datetime.now(timezone.utc)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        tomorrow_start = today_start + timedelta(days=1)
        day_after_tomorrow = tomorrow_start + timedelta(days=1)
        week_end = today_start + timedelta(days=7)

        return ReviewForecast(
            overdue=await self._count_rows_in_date_range(learner_id, None, today_start),
            today=await self._count_rows_in_date_range(
                learner_id, today_start, tomorrow_start
            ),
            tomorrow=await self._count_rows_in_date_range(
                learner_id, tomorrow_start, day_after_tomorrow
            ),
            this_week=await self._count_rows_in_date_range(
                learner_id, day_after_tomorrow, week_end
            ),
            later=await self._count_rows_in_date_range(learner_id, week_end, None),
        )
