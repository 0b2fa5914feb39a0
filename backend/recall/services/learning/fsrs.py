"""
FSRS (Free Spaced Repetition Scheduler) Memory Model

This module wraps the FSRS library behind the MemoryModel interface the
scheduling core consumes. FSRS models memory with stability and difficulty
and predicts the interval at which recall probability decays to the desired
retention.

Key Concepts:
- Stability (S): Days until recall probability decays to 90%
- Difficulty (D): Inherent difficulty of the card (1-10)
- Retrievability (R): Current recall probability based on elapsed time

The library's learning/relearning steps and interval fuzzing are disabled:
every review yields a whole-day FSRS interval, so replaying the same history
always reproduces the same schedule.

Usage:
    from recall.services.learning.fsrs import create_memory_model

    model = create_memory_model(weights)  # None = library defaults

    # Candidate outcomes of reviewing a card now
    outcomes = model.next_states(MemoryState(3.2, 5.1), 0.9, elapsed_days=4)
    interval = outcomes.for_rating(Rating.GOOD).interval_days
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from fsrs import Card as FSRSCard
from fsrs import Rating as FSRSRating
from fsrs import ReviewLog as FSRSReviewLog
from fsrs import Scheduler, State

from recall.config import settings
from recall.enums.learning import Rating
from recall.services.learning.memory_model import (
    MemoryState,
    NextState,
    NextStates,
    ReviewStep,
)

logger = logging.getLogger(__name__)


class FSRSMemoryModel:
    """
    MemoryModel backed by the fsrs library.

    Attributes:
        parameters: FSRS parameter vector in use
        maximum_interval: Maximum days between reviews
    """

    def __init__(
        self,
        parameters: Optional[Sequence[float]] = None,
        maximum_interval: Optional[int] = None,
    ):
        """
        Initialize the model.

        Args:
            parameters: Learner-specific FSRS weights (None = library defaults)
            maximum_interval: Maximum interval in days
                (defaults to settings.FSRS_MAX_INTERVAL_DAYS)
        """
        self.maximum_interval = maximum_interval or settings.FSRS_MAX_INTERVAL_DAYS
        self.parameters = (
            tuple(parameters) if parameters else tuple(Scheduler().parameters)
        )
        # One scheduler per desired retention (the library fixes it at construction)
        self._schedulers: dict[float, Scheduler] = {}

    def _scheduler(self, desired_retention: float) -> Scheduler:
        scheduler = self._schedulers.get(desired_retention)
        if scheduler is None:
            scheduler = Scheduler(
                parameters=self.parameters,
                desired_retention=desired_retention,
                learning_steps=(),
                relearning_steps=(),
                maximum_interval=self.maximum_interval,
                enable_fuzzing=False,
            )
            self._schedulers[desired_retention] = scheduler
        return scheduler

    @staticmethod
    def _to_card(
        memory: Optional[MemoryState], review_time: datetime, elapsed_days: int
    ) -> FSRSCard:
        # card_id is irrelevant here; passing one skips the library's id generation
        if memory is None:
            return FSRSCard(card_id=0, state=State.Learning, due=review_time)
        return FSRSCard(
            card_id=0,
            state=State.Review,
            stability=memory.stability,
            difficulty=memory.difficulty,
            due=review_time,
            last_review=review_time - timedelta(days=elapsed_days),
        )

    def _step(
        self,
        memory: Optional[MemoryState],
        desired_retention: float,
        elapsed_days: int,
        rating: Rating,
        review_time: datetime,
    ) -> NextState:
        card = self._to_card(memory, review_time, elapsed_days)
        result, _ = self._scheduler(desired_retention).review_card(
            card, FSRSRating(int(rating)), review_datetime=review_time
        )
        return NextState(
            memory=MemoryState(
                stability=result.stability, difficulty=result.difficulty
            ),
            interval_days=(result.due - review_time).days,
        )

    def next_states(
        self,
        memory: Optional[MemoryState],
        desired_retention: float,
        elapsed_days: int,
    ) -> NextStates:
        """
        Compute the four candidate outcomes of reviewing a card now.

        Args:
            memory: Current memory state, None for a card never reviewed
            desired_retention: Target recall probability at the next review
            elapsed_days: Whole days since the last review (0 if never reviewed)

        Returns:
            NextStates indexed by rating, each with memory state and interval
        """
        review_time = datetime.now(timezone.utc)
        outcomes = {
            rating: self._step(
                memory, desired_retention, elapsed_days, rating, review_time
            )
            for rating in Rating
        }
        return NextStates(
            again=outcomes[Rating.AGAIN],
            hard=outcomes[Rating.HARD],
            good=outcomes[Rating.GOOD],
            easy=outcomes[Rating.EASY],
        )

    def compute_state(self, sequence: Sequence[ReviewStep]) -> Optional[MemoryState]:
        """
        Replay a card's review sequence from the never-reviewed baseline.

        Args:
            sequence: Review steps, oldest first

        Returns:
            Memory state after the last step, None for an empty sequence
        """
        review_time = datetime.now(timezone.utc)
        memory: Optional[MemoryState] = None
        for step in sequence:
            elapsed = step.elapsed_days if memory is not None else 0
            memory = self._step(
                memory,
                settings.FSRS_DEFAULT_RETENTION,
                elapsed,
                step.rating,
                review_time,
            ).memory
        return memory

    def retrievability(self, stability: float, elapsed_days: float) -> float:
        """
        Recall probability on the FSRS forgetting curve.

        Args:
            stability: Memory stability in days
            elapsed_days: Days since the last review

        Returns:
            Probability of recall (0.0 to 1.0)
        """
        now = datetime.now(timezone.utc)
        card = FSRSCard(
            card_id=0,
            state=State.Review,
            stability=stability,
            last_review=now - timedelta(days=max(0.0, elapsed_days)),
        )
        return self._scheduler(settings.FSRS_DEFAULT_RETENTION).get_card_retrievability(
            card, current_datetime=now
        )

    def fit_parameters(self, sequences: Sequence[Sequence[ReviewStep]]) -> list[float]:
        """
        Fit FSRS weights to a learner's review history.

        Requires the library's optimizer extra (torch). Sequences are treated
        as independent cards.

        Args:
            sequences: Per-card review steps with reviewed_at set

        Returns:
            Optimized parameter vector

        Raises:
            ValueError: If a step has no reviewed_at timestamp
        """
        from fsrs import Optimizer

        review_logs: list[FSRSReviewLog] = []
        for card_index, sequence in enumerate(sequences):
            for step in sequence:
                if step.reviewed_at is None:
                    raise ValueError("fit_parameters requires reviewed_at on every step")
                review_logs.append(
                    FSRSReviewLog(
                        card_id=card_index,
                        rating=FSRSRating(int(step.rating)),
                        review_datetime=step.reviewed_at.astimezone(timezone.utc),
                    )
                )

        logger.info(
            f"Fitting FSRS parameters on {len(review_logs)} reviews "
            f"across {len(sequences)} cards"
        )
        optimizer = Optimizer(review_logs)
        return [float(w) for w in optimizer.compute_optimal_parameters()]


def create_memory_model(
    parameters: Optional[Sequence[float]] = None,
    max_interval: Optional[int] = None,
) -> FSRSMemoryModel:
    """
    Create a configured FSRS memory model.

    Args:
        parameters: Learner-specific weights (default: library defaults)
        max_interval: Maximum interval in days
            (default: settings.FSRS_MAX_INTERVAL_DAYS)

    Returns:
        Configured FSRSMemoryModel instance
    """
    return FSRSMemoryModel(parameters=parameters, maximum_interval=max_interval)
