"""
Assignment Provider

Answers the questions the scheduling core asks about content and enrollment:
which cards are assigned to a learner, which cards a deck holds, and whether
a learner is currently eligible for practice. Authoring content and managing
rosters happen elsewhere; this module only reads them, plus recording deck
assignments.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import Card, DeckAssignment, Learner
from recall.enums.learning import LearnerStatus

logger = logging.getLogger(__name__)


class AssignmentProvider(Protocol):
    """Content/assignment collaborator consumed by the scheduling core."""

    async def assigned_card_ids(self, learner_id: str) -> list[str]:
        ...

    async def deck_card_ids(self, deck_id: str) -> list[str]:
        ...

    async def is_eligible(self, learner_id: str) -> bool:
        ...


class DatabaseAssignmentProvider:
    """AssignmentProvider backed by the learners / cards / deck_assignments tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_learner(self, learner_id: str) -> Optional[Learner]:
        return await self.db.get(Learner, learner_id)

    async def is_eligible(self, learner_id: str) -> bool:
        """Active and not archived. Unknown learners are not eligible."""
        learner = await self.get_learner(learner_id)
        return (
            learner is not None
            and learner.status == LearnerStatus.ACTIVE.value
            and not learner.is_archived
        )

    async def assigned_card_ids(self, learner_id: str) -> list[str]:
        """Cards of every deck assigned to the learner, in curriculum order."""
        result = await self.db.execute(
            select(Card.id)
            .join(DeckAssignment, DeckAssignment.deck_id == Card.deck_id)
            .where(DeckAssignment.learner_id == learner_id)
            .order_by(Card.position, Card.created_at, Card.id)
        )
        return list(dict.fromkeys(result.scalars().all()))

    async def deck_card_ids(self, deck_id: str) -> list[str]:
        result = await self.db.execute(
            select(Card.id)
            .where(Card.deck_id == deck_id)
            .order_by(Card.position, Card.created_at, Card.id)
        )
        return list(result.scalars().all())

    async def assign_deck(self, learner_id: str, deck_id: str) -> DeckAssignment:
        """Record a deck assignment. Idempotent."""
        result = await self.db.execute(
            select(DeckAssignment).where(
                DeckAssignment.learner_id == learner_id,
                DeckAssignment.deck_id == deck_id,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            assignment = DeckAssignment(learner_id=learner_id, deck_id=deck_id)
            self.db.add(assignment)
            await self.db.flush()
            logger.info(f"Assigned deck {deck_id} to learner {learner_id}")
        return assignment

    async def revoke_deck(self, learner_id: str, deck_id: str) -> bool:
        """Remove a deck assignment. Returns False if it didn't exist."""
        result = await self.db.execute(
            delete(DeckAssignment).where(
                DeckAssignment.learner_id == learner_id,
                DeckAssignment.deck_id == deck_id,
            )
        )
        return bool(result.rowcount)
