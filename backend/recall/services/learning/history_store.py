"""
Review History Store

Append-only log of review events per (learner, card). This log is the
source of truth: the state cache is derived from it and can always be
regenerated by replaying it.

Events are never updated or deleted here. Ordering by (reviewed_at, id) is
authoritative; id breaks ties between reviews recorded in the same instant.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import LearnerCardState, ReviewEvent
from recall.enums.learning import Rating
from recall.models.learning import ReviewContext

logger = logging.getLogger(__name__)


class HistoryStore:
    """Read/append access to review_events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def append(
        self,
        learner_id: str,
        card_id: str,
        rating: Rating,
        reviewed_at: datetime,
        context: ReviewContext,
        previous: Optional[LearnerCardState] = None,
    ) -> ReviewEvent:
        """
        Stage a review event in the current transaction.

        The event is flushed with the caller's commit, so it lands together
        with the matching cache update or not at all.

        Args:
            learner_id: Reviewing learner
            card_id: Reviewed card
            rating: Validated rating
            reviewed_at: Review timestamp (also the cache row's last_reviewed)
            context: Session id, exercise family and latency
            previous: Cache row before the review, snapshotted onto the event
        """
        event = ReviewEvent(
            learner_id=learner_id,
            card_id=card_id,
            rating=int(rating),
            reviewed_at=reviewed_at,
            session_id=context.session_id,
            review_type=context.review_type.value,
            response_time_ms=context.response_time_ms,
        )
        if previous is not None:
            event.previous_state = previous.state
            event.previous_stability = previous.stability
            event.previous_difficulty = previous.difficulty
            event.previous_due = previous.due
            event.previous_last_reviewed = previous.last_reviewed

        self.db.add(event)
        return event

    async def load_for_learner(self, learner_id: str) -> list[ReviewEvent]:
        """All of a learner's events in authoritative order."""
        result = await self.db.execute(
            select(ReviewEvent)
            .where(ReviewEvent.learner_id == learner_id)
            .order_by(ReviewEvent.reviewed_at, ReviewEvent.id)
        )
        return list(result.scalars().all())

    async def load_for_card(self, learner_id: str, card_id: str) -> list[ReviewEvent]:
        result = await self.db.execute(
            select(ReviewEvent)
            .where(
                ReviewEvent.learner_id == learner_id,
                ReviewEvent.card_id == card_id,
            )
            .order_by(ReviewEvent.reviewed_at, ReviewEvent.id)
        )
        return list(result.scalars().all())

    async def load_for_cards(
        self, learner_id: str, card_ids: Sequence[str]
    ) -> list[ReviewEvent]:
        """A learner's events for some cards, in authoritative order."""
        if not card_ids:
            return []
        result = await self.db.execute(
            select(ReviewEvent)
            .where(
                ReviewEvent.learner_id == learner_id,
                ReviewEvent.card_id.in_(card_ids),
            )
            .order_by(ReviewEvent.reviewed_at, ReviewEvent.id)
        )
        return list(result.scalars().all())

    async def count_for_learner(self, learner_id: str) -> int:
        result = await self.db.execute(
            select(func.count(ReviewEvent.id)).where(
                ReviewEvent.learner_id == learner_id
            )
        )
        return result.scalar() or 0


def group_by_card(events: Sequence[ReviewEvent]) -> dict[str, list[ReviewEvent]]:
    """
    Partition ordered events into per-card sequences.

    Relative order inside each card is preserved, so ordered input yields
    ordered sequences.
    """
    by_card: dict[str, list[ReviewEvent]] = defaultdict(list)
    for event in events:
        by_card[event.card_id].append(event)
    return dict(by_card)
