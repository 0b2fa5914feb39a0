"""
Parameter Optimizer

Fits learner-specific memory-model parameters from the learner's review
history and activates them as a new version.

The read and the fit happen without locks (the fit is CPU-bound and runs in
a worker thread). Only the final flip, deactivating the old version and
inserting the new active one, is a short transaction. Cached states become
stale once parameters change; the job layer follows every successful
optimization with a cache rebuild.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from recall.config import settings
from recall.enums.learning import OptimizationStatus
from recall.models.learning import OptimizationResult
from recall.services.learning.errors import conflict_from_db_error
from recall.services.learning.fsrs import create_memory_model
from recall.services.learning.history_store import HistoryStore, group_by_card
from recall.services.learning.memory_model import ModelFactory, build_sequence
from recall.services.learning.parameter_store import ParameterStore

logger = logging.getLogger(__name__)


class ParameterOptimizer:
    """
    Per-learner parameter fitting.

    Usage:
        result = await ParameterOptimizer(db).optimize(learner_id)
        if result.status == OptimizationStatus.OPTIMIZED:
            ...  # schedule a cache rebuild
    """

    def __init__(
        self,
        db: AsyncSession,
        model_factory: ModelFactory = create_memory_model,
        min_reviews: Optional[int] = None,
    ):
        self.db = db
        self.model_factory = model_factory
        self.min_reviews = min_reviews or settings.OPTIMIZER_MIN_REVIEWS
        self.history = HistoryStore(db)
        self.parameters = ParameterStore(db)

    async def optimize(self, learner_id: str) -> OptimizationResult:
        """
        Fit and activate new parameters if there is enough history.

        Too little history is not an error: the result is SKIPPED and the
        active parameters stay as they are.

        Args:
            learner_id: Learner to optimize

        Returns:
            OptimizationResult (OPTIMIZED with the new version, or SKIPPED)
        """
        events = await self.history.load_for_learner(learner_id)
        review_count = len(events)

        if review_count < self.min_reviews:
            message = (
                f"Skipping optimization for learner {learner_id}: insufficient "
                f"review history ({review_count} < {self.min_reviews})"
            )
            logger.warning(message)
            return OptimizationResult(
                learner_id=learner_id,
                status=OptimizationStatus.SKIPPED,
                message=message,
                review_count=review_count,
            )

        sequences = [
            build_sequence(card_events)
            for card_events in group_by_card(events).values()
        ]
        # Release the read snapshot before the (long) fit
        await self.db.commit()

        model = self.model_factory(None)
        logger.info(
            f"Optimizing FSRS parameters for learner {learner_id} "
            f"on {review_count} reviews across {len(sequences)} cards"
        )
        weights = await asyncio.to_thread(model.fit_parameters, sequences)

        try:
            record = await self.parameters.activate_new_version(
                learner_id, weights, training_set_size=review_count
            )
            await self.db.commit()
        except DBAPIError as e:
            await self.db.rollback()
            # A concurrent optimization of the same learner won the flip
            conflict = conflict_from_db_error(e, unique_violation=True)
            if conflict is not None:
                raise conflict from e
            raise

        return OptimizationResult(
            learner_id=learner_id,
            status=OptimizationStatus.OPTIMIZED,
            message=(
                f"Optimized FSRS parameters for learner {learner_id} "
                f"(version {record.version}, {review_count} reviews)"
            ),
            review_count=review_count,
            version=record.version,
            weights=list(record.weights),
        )
