"""
Learning System Enums

Defines enums for the FSRS spaced repetition scheduler, learner eligibility
and the background jobs that maintain the scheduling cache.
"""

from enum import Enum


class CardState(str, Enum):
    """
    Lifecycle tags for a learner's card.

    State transitions:
    - NEW → REVIEW (first successful review) or RELEARNING (first review rated Again)
    - REVIEW → REVIEW (success) or RELEARNING (lapse)
    - RELEARNING → REVIEW (recovered) or RELEARNING (still struggling)

    LEARNING is part of the stored vocabulary but is never written by the
    scheduler itself; rows carrying it are treated like any other reviewed row.
    """

    NEW = "new"  # Assigned, never reviewed
    LEARNING = "learning"  # Being learned, short intervals
    REVIEW = "review"  # Graduated, normal spaced intervals
    RELEARNING = "relearning"  # Lapsed and being relearned


class Rating(int, Enum):
    """
    FSRS review ratings.

    Learner self-assessment (or exercise grading) after a card is presented.
    """

    AGAIN = 1  # Complete failure, counts as a lapse
    HARD = 2  # Significant difficulty, shorter interval
    GOOD = 3  # Correct with reasonable effort, normal interval
    EASY = 4  # Too easy, longer interval


class ReviewType(str, Enum):
    """Exercise family that produced a review event."""

    VOCABULARY = "vocabulary"
    LISTENING = "listening"
    SPELLING = "spelling"
    GRAMMAR = "grammar"
    GENERIC = "generic"


class LearnerStatus(str, Enum):
    """Enrollment status of a learner. Only ACTIVE learners get queues."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class JobType(str, Enum):
    """Deferred operations executed by the background job runner."""

    INITIALIZE_CARD_STATES = "initialize_card_states"
    REBUILD_FSRS_CACHE = "rebuild_fsrs_cache"
    OPTIMIZE_FSRS_PARAMS = "optimize_fsrs_params"


class JobStatus(str, Enum):
    """
    Job handle status.

    PENDING → RUNNING → COMPLETED | FAILED | SKIPPED
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Learner ineligible or not enough data

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED)


class OptimizationStatus(str, Enum):
    """Outcome of a parameter optimization run."""

    OPTIMIZED = "optimized"
    SKIPPED = "skipped"
