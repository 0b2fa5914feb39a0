"""
Practice Queue Assembly

Builds the ordered list of cards for a practice session from the state
cache:

1. Due cards: reviewed cards due now, most overdue first, up to max_due.
2. Top-up: if fewer than min_due were found, cards due later today (UTC)
   fill the gap, still in due order.
3. New cards: up to new_count never-reviewed cards in curriculum order
   (deck position, then creation time, then id). Never random, so the same
   state always introduces the same cards.
4. Interleaving: new cards are spread evenly through the due cards.

An empty queue means the learner has finished everything in scope.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import LearnerCardState
from recall.enums.learning import CardState
from recall.models.learning import (
    InitialQueueResponse,
    QueueConfig,
    QueueItem,
    QueueResponse,
    QueueScope,
)
from recall.services.learning.state_cache import StateCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


def end_of_utc_day(now: datetime) -> datetime:
    """Midnight UTC following `now`."""
    today = now.astimezone(timezone.utc).date()
    return datetime.combine(today + timedelta(days=1), time.min, tzinfo=timezone.utc)


def interleave(due_items: Sequence[T], new_items: Sequence[T]) -> list[T]:
    """
    Spread new items evenly among due items.

    One new item is placed after every `spacing` due items, where
    spacing = max(1, len(due) // (len(new) + 1)). New items that don't fit
    are appended at the end. With at least as many due items as new ones,
    no two new items end up adjacent.

    Examples:
        >>> interleave(["d1", "d2", "d3", "d4"], ["n1"])
        ['d1', 'd2', 'n1', 'd3', 'd4']
        >>> interleave([], ["n1", "n2"])
        ['n1', 'n2']
    """
    if not new_items:
        return list(due_items)
    if not due_items:
        return list(new_items)

    spacing = max(1, len(due_items) // (len(new_items) + 1))
    result: list[T] = []
    pending = list(new_items)

    for i, item in enumerate(due_items, start=1):
        result.append(item)
        if pending and i % spacing == 0:
            result.append(pending.pop(0))

    result.extend(pending)
    return result


def _to_item(row: LearnerCardState) -> QueueItem:
    return QueueItem(
        card_id=row.card_id,
        state=CardState(row.state),
        due=row.due,
        is_new=row.state == CardState.NEW.value,
    )


class QueueAssembler:
    """
    Builds practice queues for a learner.

    Usage:
        assembler = QueueAssembler(db)
        queue = await assembler.assemble_queue(learner_id, QueueScope(deck_id=d))
        for item in queue.items:
            ...
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.cache = StateCache(db)

    async def get_initial_queue(
        self,
        learner_id: str,
        scope: Optional[QueueScope] = None,
        config: Optional[QueueConfig] = None,
        now: Optional[datetime] = None,
    ) -> InitialQueueResponse:
        """
        Select due and new items without interleaving them.

        Args:
            learner_id: Learner to build the queue for
            scope: Optional deck / card restriction
            config: Quotas (defaults from settings)
            now: Reference time (defaults to current UTC time)

        Returns:
            InitialQueueResponse with due_items and new_items in queue order
        """
        config = config or QueueConfig()
        now = now or datetime.now(timezone.utc)

        due_rows = await self.cache.due_rows(learner_id, now, config.max_due, scope)

        if len(due_rows) < config.min_due:
            top_up = await self.cache.due_before_rows(
                learner_id,
                end_of_utc_day(now),
                config.min_due - len(due_rows),
                scope,
                exclude_card_ids=[row.card_id for row in due_rows],
            )
            if top_up:
                logger.debug(
                    f"Topped up queue for learner {learner_id} with "
                    f"{len(top_up)} cards due later today"
                )
            due_rows.extend(top_up)

        new_rows = (
            await self.cache.new_rows(learner_id, config.new_count, scope)
            if config.new_count > 0
            else []
        )

        return InitialQueueResponse(
            due_items=[_to_item(row) for row in due_rows],
            new_items=[_to_item(row) for row in new_rows],
        )

    async def assemble_queue(
        self,
        learner_id: str,
        scope: Optional[QueueScope] = None,
        config: Optional[QueueConfig] = None,
        now: Optional[datetime] = None,
    ) -> QueueResponse:
        """Select due and new items and interleave them into one queue."""
        initial = await self.get_initial_queue(learner_id, scope, config, now)
        items = interleave(initial.due_items, initial.new_items)

        logger.info(
            f"Assembled queue for learner {learner_id}: "
            f"{len(initial.due_items)} due, {len(initial.new_items)} new"
        )
        return QueueResponse(
            items=items,
            due_count=len(initial.due_items),
            new_count=len(initial.new_items),
        )
