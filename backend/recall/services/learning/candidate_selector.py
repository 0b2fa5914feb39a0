"""
Candidate Selection

Read-only queries that pick cards a learner already knows well, for
recall-style practice such as listening exercises.

A reviewed card qualifies when its modeled retrievability is at least the
threshold (0.36 by default, roughly the recall probability after one
stability period) or when it isn't due for more than the confident horizon.
Qualifying cards are sampled at random, unlike new-card introduction which
is strictly ordered.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recall.db.models_learning import Card, LearnerCardState
from recall.models.learning import CandidatePredicate
from recall.services.learning.fsrs import create_memory_model
from recall.services.learning.memory_model import ModelFactory, SECONDS_PER_DAY
from recall.services.learning.parameter_store import ParameterStore
from recall.services.learning.state_cache import StateCache

logger = logging.getLogger(__name__)


class CandidateSelector:
    """Retrievability-filtered selection over the state cache."""

    def __init__(
        self,
        db: AsyncSession,
        model_factory: ModelFactory = create_memory_model,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.model_factory = model_factory
        self.rng = rng or random.Random()
        self.cache = StateCache(db)
        self.parameters = ParameterStore(db)

    async def _score(
        self,
        learner_id: str,
        predicate: CandidatePredicate,
        now: datetime,
    ) -> list[tuple[LearnerCardState, float]]:
        """Qualifying rows paired with their retrievability."""
        rows = await self.cache.reviewed_rows_with_cards(learner_id)
        if not rows:
            return []

        model = self.model_factory(await self.parameters.get_active_weights(learner_id))
        horizon = now + timedelta(days=predicate.confident_horizon_days)

        scored = []
        for row in rows:
            elapsed = (now - row.last_reviewed).total_seconds() / SECONDS_PER_DAY
            retrievability = model.retrievability(row.stability, elapsed)
            if retrievability >= predicate.min_retrievability or row.due > horizon:
                scored.append((row, retrievability))
        return scored

    async def select_candidates(
        self,
        learner_id: str,
        predicate: Optional[CandidatePredicate] = None,
        now: Optional[datetime] = None,
    ) -> list[Card]:
        """
        Randomly sample well-known cards.

        Args:
            learner_id: Learner
            predicate: Threshold, horizon and limit (defaults from settings)
            now: Reference time (defaults to current UTC time)

        Returns:
            Up to predicate.limit cards, in random order
        """
        predicate = predicate or CandidatePredicate()
        now = now or datetime.now(timezone.utc)

        scored = await self._score(learner_id, predicate, now)
        chosen = self.rng.sample(scored, min(predicate.limit, len(scored)))

        logger.debug(
            f"Selected {len(chosen)} of {len(scored)} candidates for learner {learner_id}"
        )
        return [row.card for row, _ in chosen]

    async def suggest_max_count(
        self,
        learner_id: str,
        predicate: Optional[CandidatePredicate] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Advisory size for a recall practice section.

        Qualifying cards are ranked by retrievability, highest first; the
        suggestion is the length of the leading run that still meets the
        retrievability threshold.
        """
        predicate = predicate or CandidatePredicate()
        now = now or datetime.now(timezone.utc)

        scored = await self._score(learner_id, predicate, now)
        scored.sort(key=lambda pair: pair[1], reverse=True)

        suggested = 0
        for _, retrievability in scored:
            if retrievability < predicate.min_retrievability:
                break
            suggested += 1
        return suggested
