"""
Memory Model Interface

The scheduling core treats the memory model (stability/difficulty math and
interval prediction) as a pluggable collaborator. This module defines what the
core needs from it, plus the value types exchanged with it.

Key Concepts:
- Memory state: (stability, difficulty) of one learner-card pair
- Next states: the four candidate outcomes of a review (Again/Hard/Good/Easy),
  each with the resulting memory state and the interval to the next review
- Review step: one entry of a per-card review sequence (rating + days since
  the previous review)

The default implementation wraps the `fsrs` library (see fsrs.py).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence

from recall.enums.learning import Rating

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class MemoryState:
    """Memory strength of a learner-card pair."""

    stability: float
    difficulty: float


@dataclass(frozen=True)
class NextState:
    """Outcome of a review with one specific rating."""

    memory: MemoryState
    interval_days: int


@dataclass(frozen=True)
class NextStates:
    """Rating-indexed candidate outcomes of a review."""

    again: NextState
    hard: NextState
    good: NextState
    easy: NextState

    def for_rating(self, rating: Rating) -> NextState:
        """Select the outcome matching a rating."""
        return {
            Rating.AGAIN: self.again,
            Rating.HARD: self.hard,
            Rating.GOOD: self.good,
            Rating.EASY: self.easy,
        }[Rating(rating)]


@dataclass(frozen=True)
class ReviewStep:
    """
    One review of a per-card sequence.

    elapsed_days is measured from the previous step (0 for the first one).
    reviewed_at is carried for models that fit on absolute timestamps.
    """

    rating: Rating
    elapsed_days: int
    reviewed_at: Optional[datetime] = None


class MemoryModel(Protocol):
    """What the scheduling core consumes from a memory model."""

    def compute_state(self, sequence: Sequence[ReviewStep]) -> Optional[MemoryState]:
        """Memory state after a review sequence, None for an empty one."""
        ...

    def next_states(
        self,
        memory: Optional[MemoryState],
        desired_retention: float,
        elapsed_days: int,
    ) -> NextStates:
        """Candidate outcomes of reviewing now. memory=None means never reviewed."""
        ...

    def retrievability(self, stability: float, elapsed_days: float) -> float:
        """Modeled recall probability after elapsed_days."""
        ...

    def fit_parameters(self, sequences: Sequence[Sequence[ReviewStep]]) -> list[float]:
        """Fit a parameter vector to per-card review sequences."""
        ...


# Builds a model from a learner's parameter vector (None = library defaults)
ModelFactory = Callable[[Optional[Sequence[float]]], MemoryModel]


def elapsed_days_between(earlier: Optional[datetime], later: datetime) -> int:
    """
    Whole days between two timestamps, rounded to nearest.

    Used both when recording a review and when replaying history, so the two
    paths feed identical inputs to the model.
    """
    if earlier is None:
        return 0
    seconds = (later - earlier).total_seconds()
    return max(0, round(seconds / SECONDS_PER_DAY))


def build_sequence(events: Sequence) -> list[ReviewStep]:
    """
    Convert a card's chronologically ordered review events into review steps.

    Args:
        events: Objects with `rating` and `reviewed_at` attributes, oldest first

    Returns:
        Review steps with elapsed days measured between consecutive events
    """
    steps: list[ReviewStep] = []
    previous: Optional[datetime] = None
    for event in events:
        steps.append(
            ReviewStep(
                rating=Rating(event.rating),
                elapsed_days=elapsed_days_between(previous, event.reviewed_at),
                reviewed_at=event.reviewed_at,
            )
        )
        previous = event.reviewed_at
    return steps
