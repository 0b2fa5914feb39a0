"""
Review Recorder

Records one review of one card: computes the card's next memory state and
due date with the memory model, updates the cached state, and appends the
review to the history, all in one transaction.

Flow per attempt:
1. Take the learner's advisory lock in shared mode without waiting. A
   running cache rebuild holds it exclusively, so the review fails fast
   with RebuildInProgressError instead of writing into a cache that is
   about to be replaced.
2. Lock the (learner, card) cache row (SELECT ... FOR UPDATE).
3. Build the memory model from the learner's active parameters.
4. Ask the model for the four candidate outcomes and keep the rated one.
5. Write the new state and the history event, then commit.

Lock and serialization failures are retried a bounded number of times.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

import pydantic
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recall.config import settings
from recall.db.locks import acquire_learner_lock
from recall.db.models_learning import LearnerCardState
from recall.enums.learning import CardState, Rating
from recall.middleware.error_handling import ServiceError
from recall.models.learning import ReviewContext
from recall.services.learning.errors import (
    ConcurrencyConflict,
    NoPriorStateError,
    RebuildInProgressError,
    ValidationError,
    conflict_from_db_error,
)
from recall.services.learning.fsrs import create_memory_model
from recall.services.learning.history_store import HistoryStore
from recall.services.learning.memory_model import (
    MemoryState,
    ModelFactory,
    elapsed_days_between,
)
from recall.services.learning.parameter_store import ParameterStore
from recall.services.learning.state_cache import StateCache

logger = logging.getLogger(__name__)


def validate_rating(rating: Any) -> Rating:
    """Accept integers 1-4 (or Rating members) only."""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(
            f"Rating must be an integer between 1 and 4, got {rating!r}",
            details={"rating": repr(rating)},
        )
    try:
        return Rating(rating)
    except ValueError as e:
        raise ValidationError(
            f"Rating must be between 1 and 4, got {rating}",
            details={"rating": rating},
        ) from e


def validate_context(
    context: Union[ReviewContext, dict, None],
) -> ReviewContext:
    if context is None:
        return ReviewContext()
    if isinstance(context, ReviewContext):
        return context
    try:
        return ReviewContext.model_validate(context)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid review context",
            details={"errors": e.errors(include_url=False)},
        ) from e


class ReviewRecorder:
    """
    Records reviews against the state cache and the history.

    Usage:
        recorder = ReviewRecorder(db)
        state = await recorder.record_review(learner_id, card_id, Rating.GOOD)
    """

    def __init__(
        self,
        db: AsyncSession,
        model_factory: ModelFactory = create_memory_model,
        desired_retention: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.model_factory = model_factory
        self.desired_retention = desired_retention or settings.FSRS_DEFAULT_RETENTION
        self.max_attempts = max_attempts or settings.REVIEW_CONFLICT_MAX_ATTEMPTS
        self.history = HistoryStore(db)
        self.cache = StateCache(db)
        self.parameters = ParameterStore(db)

    async def record_review(
        self,
        learner_id: str,
        card_id: str,
        rating: Any,
        context: Union[ReviewContext, dict, None] = None,
    ) -> LearnerCardState:
        """
        Record a review and reschedule the card.

        Args:
            learner_id: Reviewing learner
            card_id: Reviewed card (must have a cache row)
            rating: 1=Again, 2=Hard, 3=Good, 4=Easy
            context: Optional ReviewContext (or dict) for the history event

        Returns:
            The updated LearnerCardState row

        Raises:
            ValidationError: Invalid rating or context (nothing written)
            NoPriorStateError: No cache row for the pair (nothing written)
            RebuildInProgressError: A rebuild holds the learner lock
            ConcurrencyConflict: Conflicts persisted past the retry budget
        """
        rating = validate_rating(rating)
        context = validate_context(context)

        row: Optional[LearnerCardState] = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(ConcurrencyConflict),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                row = await self._record_once(learner_id, card_id, rating, context)
        return row

    async def _record_once(
        self,
        learner_id: str,
        card_id: str,
        rating: Rating,
        context: ReviewContext,
    ) -> LearnerCardState:
        now = datetime.now(timezone.utc)
        try:
            if not await acquire_learner_lock(
                self.db, learner_id, shared=True, wait=False
            ):
                raise RebuildInProgressError(learner_id)

            row = await self.cache.get(learner_id, card_id, for_update=True)
            if row is None:
                raise NoPriorStateError(learner_id, card_id)

            model = self.model_factory(
                await self.parameters.get_active_weights(learner_id)
            )

            if row.state == CardState.NEW.value:
                memory = None
                elapsed = 0
            else:
                memory = MemoryState(stability=row.stability, difficulty=row.difficulty)
                elapsed = elapsed_days_between(row.last_reviewed, now)

            selected = model.next_states(
                memory, self.desired_retention, elapsed
            ).for_rating(rating)

            # Snapshot is taken from the row before it is mutated below
            self.history.append(
                learner_id, card_id, rating, now, context, previous=row
            )

            row.stability = selected.memory.stability
            row.difficulty = selected.memory.difficulty
            row.scheduled_days = selected.interval_days
            row.due = now + timedelta(days=selected.interval_days)
            row.last_reviewed = now
            row.repetitions += 1
            if rating == Rating.AGAIN:
                row.lapses += 1
                row.state = CardState.RELEARNING.value
            else:
                row.state = CardState.REVIEW.value

            await self.db.commit()

        except ServiceError:
            await self.db.rollback()
            raise
        except (DBAPIError, StaleDataError) as e:
            await self.db.rollback()
            conflict = conflict_from_db_error(e)
            if conflict is not None:
                raise conflict from e
            raise

        logger.info(
            f"Recorded review for learner {learner_id} card {card_id}: "
            f"rating={int(rating)}, state={row.state}, "
            f"interval={row.scheduled_days}d, due={row.due.isoformat()}"
        )
        return row
