"""
Scheduling State Cache

One learner_card_states row per (learner, card), holding the state derived
from that pair's review history. Queue and candidate queries read it
directly instead of replaying history.

Rows are created when a card is assigned (NEW baseline, or replayed history
for a card the learner reviewed before), mutated only by the review recorder
and the cache rebuilder, and deleted only by a rebuild or an assignment
revocation. Nothing in this module commits: callers own the transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from recall.config import settings
from recall.db.models_learning import Card, LearnerCardState
from recall.enums.learning import CardState
from recall.models.learning import QueueScope

logger = logging.getLogger(__name__)


def baseline_row(
    learner_id: str, card_id: str, now: Optional[datetime] = None
) -> LearnerCardState:
    """A never-reviewed row: NEW, due immediately, baseline memory values."""
    return LearnerCardState(
        learner_id=learner_id,
        card_id=card_id,
        stability=settings.FSRS_INITIAL_STABILITY,
        difficulty=settings.FSRS_INITIAL_DIFFICULTY,
        state=CardState.NEW.value,
        scheduled_days=0,
        due=now or datetime.now(timezone.utc),
        last_reviewed=None,
        repetitions=0,
        lapses=0,
    )


def apply_scope(stmt: Select, scope: Optional[QueueScope]) -> Select:
    """Restrict a LearnerCardState query to a deck and/or explicit cards."""
    if scope is None:
        return stmt
    if scope.card_ids is not None:
        stmt = stmt.where(LearnerCardState.card_id.in_(scope.card_ids))
    if scope.deck_id is not None:
        stmt = stmt.where(
            LearnerCardState.card_id.in_(
                select(Card.id).where(Card.deck_id == scope.deck_id)
            )
        )
    return stmt


class StateCache:
    """Queries and writes over learner_card_states."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(
        self, learner_id: str, card_id: str, *, for_update: bool = False
    ) -> Optional[LearnerCardState]:
        """
        Load one pair's row.

        Args:
            learner_id: Learner
            card_id: Card
            for_update: Lock the row (SELECT ... FOR UPDATE) until the
                transaction ends
        """
        stmt = select(LearnerCardState).where(
            LearnerCardState.learner_id == learner_id,
            LearnerCardState.card_id == card_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def all_rows(self, learner_id: str) -> list[LearnerCardState]:
        result = await self.db.execute(
            select(LearnerCardState)
            .where(LearnerCardState.learner_id == learner_id)
            .order_by(LearnerCardState.card_id)
        )
        return list(result.scalars().all())

    async def missing_card_ids(
        self, learner_id: str, card_ids: Iterable[str]
    ) -> list[str]:
        """Cards (deduplicated, input order kept) the learner has no row for."""
        card_ids = list(dict.fromkeys(card_ids))
        if not card_ids:
            return []

        result = await self.db.execute(
            select(LearnerCardState.card_id).where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.card_id.in_(card_ids),
            )
        )
        existing = set(result.scalars().all())
        return [card_id for card_id in card_ids if card_id not in existing]

    async def add_rows(self, rows: Sequence[LearnerCardState]) -> None:
        self.db.add_all(rows)
        await self.db.flush()

    async def delete_for_cards(self, learner_id: str, card_ids: Sequence[str]) -> int:
        """Remove rows for revoked cards. History is kept."""
        if not card_ids:
            return 0
        result = await self.db.execute(
            delete(LearnerCardState).where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.card_id.in_(card_ids),
            )
        )
        return result.rowcount or 0

    async def replace_all(
        self, learner_id: str, rows: Sequence[LearnerCardState]
    ) -> None:
        """Swap the learner's whole row set for a freshly derived one."""
        await self.db.execute(
            delete(LearnerCardState).where(LearnerCardState.learner_id == learner_id)
        )
        self.db.add_all(rows)
        await self.db.flush()

    # ------------------------------------------------------------------
    # Queue queries
    # ------------------------------------------------------------------

    async def due_rows(
        self,
        learner_id: str,
        now: datetime,
        limit: int,
        scope: Optional[QueueScope] = None,
    ) -> list[LearnerCardState]:
        """Reviewed rows due at or before now, most overdue first."""
        stmt = (
            select(LearnerCardState)
            .where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.due <= now,
                LearnerCardState.state != CardState.NEW.value,
            )
            .order_by(LearnerCardState.due, LearnerCardState.card_id)
            .limit(limit)
        )
        result = await self.db.execute(apply_scope(stmt, scope))
        return list(result.scalars().all())

    async def due_before_rows(
        self,
        learner_id: str,
        cutoff: datetime,
        limit: int,
        scope: Optional[QueueScope] = None,
        exclude_card_ids: Sequence[str] = (),
    ) -> list[LearnerCardState]:
        """Reviewed rows due before cutoff, skipping cards already picked."""
        stmt = (
            select(LearnerCardState)
            .where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.due < cutoff,
                LearnerCardState.state != CardState.NEW.value,
            )
            .order_by(LearnerCardState.due, LearnerCardState.card_id)
            .limit(limit)
        )
        if exclude_card_ids:
            stmt = stmt.where(LearnerCardState.card_id.not_in(exclude_card_ids))
        result = await self.db.execute(apply_scope(stmt, scope))
        return list(result.scalars().all())

    async def new_rows(
        self,
        learner_id: str,
        limit: int,
        scope: Optional[QueueScope] = None,
    ) -> list[LearnerCardState]:
        """NEW rows in the cards' curriculum order."""
        stmt = (
            select(LearnerCardState)
            .join(Card, Card.id == LearnerCardState.card_id)
            .where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.state == CardState.NEW.value,
            )
            .order_by(Card.position, Card.created_at, Card.id)
            .limit(limit)
        )
        result = await self.db.execute(apply_scope(stmt, scope))
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Content-joined queries
    # ------------------------------------------------------------------

    async def due_rows_with_cards(
        self, learner_id: str, now: datetime
    ) -> list[LearnerCardState]:
        """Every row due at or before now (any state), with card content."""
        result = await self.db.execute(
            select(LearnerCardState)
            .options(selectinload(LearnerCardState.card))
            .where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.due <= now,
            )
            .order_by(LearnerCardState.due, LearnerCardState.card_id)
        )
        return list(result.scalars().all())

    async def reviewed_rows_with_cards(self, learner_id: str) -> list[LearnerCardState]:
        """REVIEW rows that have been reviewed at least once, with content."""
        result = await self.db.execute(
            select(LearnerCardState)
            .options(selectinload(LearnerCardState.card))
            .where(
                LearnerCardState.learner_id == learner_id,
                LearnerCardState.state == CardState.REVIEW.value,
                LearnerCardState.last_reviewed.is_not(None),
            )
            .order_by(LearnerCardState.card_id)
        )
        return list(result.scalars().all())
