"""
Memory Model Parameter Store

Versioned per-learner FSRS parameter vectors. At most one version per
learner is active; the partial unique index on (learner_id) WHERE is_active
rejects a second one, so activation deactivates first and inserts second
inside the caller's transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import LearnerModelParameters

logger = logging.getLogger(__name__)


class ParameterStore:
    """Access to learner_model_parameters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active(self, learner_id: str) -> Optional[LearnerModelParameters]:
        result = await self.db.execute(
            select(LearnerModelParameters).where(
                LearnerModelParameters.learner_id == learner_id,
                LearnerModelParameters.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get_active_weights(self, learner_id: str) -> Optional[list[float]]:
        """Active weights, or None when the learner still uses defaults."""
        active = await self.get_active(learner_id)
        return list(active.weights) if active else None

    async def activate_new_version(
        self,
        learner_id: str,
        weights: Sequence[float],
        training_set_size: int,
        optimization_score: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> LearnerModelParameters:
        """
        Deactivate every existing version and insert the next one as active.

        Does not commit. The deactivation is executed before the insert is
        flushed, so the one-active-row index is never violated mid-flip.

        Returns:
            The new active LearnerModelParameters row
        """
        result = await self.db.execute(
            select(func.max(LearnerModelParameters.version)).where(
                LearnerModelParameters.learner_id == learner_id
            )
        )
        next_version = (result.scalar() or 0) + 1

        await self.db.execute(
            update(LearnerModelParameters)
            .where(
                LearnerModelParameters.learner_id == learner_id,
                LearnerModelParameters.is_active.is_(True),
            )
            .values(is_active=False)
        )

        record = LearnerModelParameters(
            learner_id=learner_id,
            weights=[float(w) for w in weights],
            version=next_version,
            training_set_size=training_set_size,
            optimization_score=optimization_score,
            last_optimized=now or datetime.now(timezone.utc),
            is_active=True,
        )
        self.db.add(record)
        await self.db.flush()

        logger.info(f"Activated FSRS parameters v{next_version} for learner {learner_id}")
        return record
