"""
Cache Rebuilder

Regenerates a learner's whole state cache from the review history. Used
after the learner's memory-model parameters change (the cached states were
computed with the old ones) and to repair drift.

For every assigned card:
- No history: a NEW baseline row. A card whose current row is still NEW
  keeps that row's due date, so repeated rebuilds leave an untouched cache
  unchanged; any other card gets due = now.
- History: all events but the last are replayed through the memory model
  from the NEW baseline. The last event is then applied the same way the
  review recorder applies a review (four candidate outcomes, keep the rated
  one), so a rebuilt row matches the row the recorder would have written,
  with due = last review time + interval.

Events of cards that are no longer assigned are ignored.

The whole rebuild runs in one transaction under the learner's exclusive
advisory lock: reviews for the learner fail fast while it runs, and readers
see either the old row set or the new one.

The same replay seeds rows for newly assigned cards (seed_rows), so a deck
that is revoked and assigned again picks up the learner's earlier reviews.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from recall.config import settings
from recall.db.locks import acquire_learner_lock
from recall.db.models_learning import LearnerCardState, ReviewEvent
from recall.enums.learning import CardState, Rating
from recall.middleware.error_handling import ServiceError
from recall.models.learning import RebuildResult
from recall.services.learning.assignments import (
    AssignmentProvider,
    DatabaseAssignmentProvider,
)
from recall.services.learning.errors import conflict_from_db_error
from recall.services.learning.fsrs import create_memory_model
from recall.services.learning.history_store import HistoryStore, group_by_card
from recall.services.learning.memory_model import (
    MemoryModel,
    ModelFactory,
    build_sequence,
)
from recall.services.learning.parameter_store import ParameterStore
from recall.services.learning.state_cache import StateCache, baseline_row

logger = logging.getLogger(__name__)


class CacheRebuilder:
    """
    Rebuilds learner_card_states from review_events.

    An assigned card with no history whose row is still NEW keeps that row's
    due date rather than moving to now, so a rebuild of an unreviewed cache
    is a no-op.

    Usage:
        result = await CacheRebuilder(db).rebuild(learner_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        assignments: Optional[AssignmentProvider] = None,
        model_factory: ModelFactory = create_memory_model,
        desired_retention: Optional[float] = None,
    ):
        self.db = db
        self.assignments = assignments or DatabaseAssignmentProvider(db)
        self.model_factory = model_factory
        self.desired_retention = desired_retention or settings.FSRS_DEFAULT_RETENTION
        self.history = HistoryStore(db)
        self.cache = StateCache(db)
        self.parameters = ParameterStore(db)

    async def rebuild(self, learner_id: str) -> RebuildResult:
        """
        Replace every cache row of the learner with one derived from history.

        Args:
            learner_id: Learner whose cache is rebuilt

        Returns:
            RebuildResult with row counts

        Raises:
            ConcurrencyConflict: The transaction hit a lock/serialization failure
        """
        now = datetime.now(timezone.utc)
        try:
            await acquire_learner_lock(self.db, learner_id, shared=False, wait=True)

            model = self.model_factory(
                await self.parameters.get_active_weights(learner_id)
            )
            assigned = await self.assignments.assigned_card_ids(learner_id)
            existing = {
                row.card_id: row for row in await self.cache.all_rows(learner_id)
            }
            events_by_card = group_by_card(
                await self.history.load_for_learner(learner_id)
            )

            rows: list[LearnerCardState] = []
            replayed = 0
            for card_id in assigned:
                events = events_by_card.get(card_id)
                if events:
                    rows.append(
                        replay_row(
                            model, learner_id, card_id, events, self.desired_retention
                        )
                    )
                    replayed += 1
                else:
                    # An untouched NEW row already is the baseline; keep its due
                    prior = existing.get(card_id)
                    due = (
                        prior.due
                        if prior is not None and prior.state == CardState.NEW.value
                        else now
                    )
                    rows.append(baseline_row(learner_id, card_id, due))

            await self.cache.replace_all(learner_id, rows)
            await self.db.commit()

        except ServiceError:
            await self.db.rollback()
            raise
        except DBAPIError as e:
            await self.db.rollback()
            conflict = conflict_from_db_error(e)
            if conflict is not None:
                raise conflict from e
            raise

        ignored = len(set(events_by_card) - set(assigned))
        if ignored:
            logger.info(
                f"Ignored history of {ignored} unassigned cards for learner {learner_id}"
            )
        logger.info(
            f"Rebuilt FSRS cache for learner {learner_id}: {len(rows)} rows "
            f"({replayed} replayed, {len(rows) - replayed} baseline)"
        )
        return RebuildResult(
            learner_id=learner_id,
            rows_rebuilt=len(rows),
            rows_replayed=replayed,
            rows_baseline=len(rows) - replayed,
        )

    async def seed_rows(self, learner_id: str, card_ids: Sequence[str]) -> int:
        """
        Create rows for cards the learner has none for.

        Cards with review history get the replayed row, others a NEW
        baseline. Existing rows are left untouched, so re-running a deck
        initialization is harmless. The caller owns the transaction and
        the learner's lock.

        Returns:
            Number of rows created
        """
        missing = await self.cache.missing_card_ids(learner_id, card_ids)
        if not missing:
            return 0

        events_by_card = group_by_card(
            await self.history.load_for_cards(learner_id, missing)
        )
        model = None
        if events_by_card:
            model = self.model_factory(
                await self.parameters.get_active_weights(learner_id)
            )

        now = datetime.now(timezone.utc)
        rows = []
        for card_id in missing:
            events = events_by_card.get(card_id)
            if events:
                rows.append(
                    replay_row(model, learner_id, card_id, events, self.desired_retention)
                )
            else:
                rows.append(baseline_row(learner_id, card_id, now))
        await self.cache.add_rows(rows)

        if events_by_card:
            logger.info(
                f"Restored {len(events_by_card)} card states from history "
                f"for learner {learner_id}"
            )
        return len(rows)


def replay_row(
    model: MemoryModel,
    learner_id: str,
    card_id: str,
    events: Sequence[ReviewEvent],
    desired_retention: float,
) -> LearnerCardState:
    """Derive one pair's cache row from its ordered, non-empty history."""
    steps = build_sequence(events)
    memory = model.compute_state(steps[:-1])
    last_step = steps[-1]
    elapsed = last_step.elapsed_days if memory is not None else 0

    selected = model.next_states(memory, desired_retention, elapsed).for_rating(
        last_step.rating
    )

    last_reviewed = events[-1].reviewed_at
    return LearnerCardState(
        learner_id=learner_id,
        card_id=card_id,
        stability=selected.memory.stability,
        difficulty=selected.memory.difficulty,
        state=(
            CardState.RELEARNING.value
            if last_step.rating == Rating.AGAIN
            else CardState.REVIEW.value
        ),
        scheduled_days=selected.interval_days,
        due=last_reviewed + timedelta(days=selected.interval_days),
        last_reviewed=last_reviewed,
        repetitions=len(events),
        lapses=sum(1 for event in events if event.rating == Rating.AGAIN),
    )
