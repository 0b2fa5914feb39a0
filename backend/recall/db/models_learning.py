"""
SQLAlchemy Database Models for the Scheduling Core

These models back the FSRS-based spaced repetition scheduler: the append-only
review history, the per-(learner, card) state cache derived from it, and the
per-learner memory-model parameters.

Tables:
- learners: Learners and their enrollment status
- cards: Read model of card content (authoring happens elsewhere)
- deck_assignments: Decks assigned to a learner
- learner_card_states: Derived scheduling state cache, one row per (learner, card)
- review_events: Append-only review history, the source of truth
- learner_model_parameters: Versioned FSRS parameter vectors, one active per learner
- jobs: Handles for deferred rebuild / optimize / initialize runs

ARCHITECTURE NOTE:
    This file contains SQLALCHEMY models for database persistence.
    There is a corresponding Pydantic file: recall/models/learning.py

    Data flows: Service Layer → Pydantic → SQLAlchemy → Database
"""

from datetime import datetime, timezone
from typing import List, Optional
import uuid


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    return str(uuid.uuid4())


from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recall.db.base import Base, UTCDateTime


# ===========================================
# Learners & Content
# ===========================================


class Learner(Base):
    """
    A learner whose cards are scheduled.

    Attributes:
        id: UUID string primary key.
        name: Display name.
        status: Enrollment status (active, paused, completed). Only active
            learners receive due cards, candidates, and background jobs.
        is_archived: Soft-delete flag. Archived learners are never eligible.
        created_at: Creation timestamp.
    """

    __tablename__ = "learners"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="active")
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


class Card(Base):
    """
    Card content read model.

    Cards belong to a deck. The core only reads them: to join content onto
    due rows and candidates, and to order new material.

    Attributes:
        id: UUID string primary key.
        deck_id: Owning deck.
        position: Curriculum position inside the deck. Together with
            created_at and id it defines the deterministic introduction order
            of new cards.
        front: Prompt side.
        back: Answer side.
        created_at: Creation timestamp.
    """

    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    deck_id: Mapped[str] = mapped_column(String(36), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    front: Mapped[str] = mapped_column(Text)
    back: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


class DeckAssignment(Base):
    """
    A deck assigned to a learner.

    The learner's assigned cards are the cards of all assigned decks.
    """

    __tablename__ = "deck_assignments"
    __table_args__ = (
        UniqueConstraint("learner_id", "deck_id", name="uq_deck_assignments_learner_deck"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), index=True
    )
    deck_id: Mapped[str] = mapped_column(String(36), index=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)


# ===========================================
# Scheduling State Cache
# ===========================================


class LearnerCardState(Base):
    """
    Derived FSRS state for one (learner, card) pair.

    This row is a cache: it must always equal the result of replaying the
    pair's review_events through the memory model from the NEW baseline.
    It is written only by the review recorder (per review, in the same
    transaction as the history append) and by the cache rebuilder.

    Attributes:
        id: Primary key.
        learner_id: Owning learner.
        card_id: Scheduled card.

        FSRS State:
        stability: Memory stability in days (> 0).
        difficulty: Card difficulty (1-10).
        state: Lifecycle tag (new, learning, review, relearning).
        scheduled_days: Interval chosen at the last review.

        Scheduling:
        due: When the card is next due.
        last_reviewed: Timestamp of most recent review, None while NEW.

        Counters:
        repetitions: Number of reviews recorded.
        lapses: Number of reviews rated Again.
    """

    __tablename__ = "learner_card_states"
    __table_args__ = (
        UniqueConstraint("learner_id", "card_id", name="uq_learner_card_states_pair"),
        Index("ix_learner_card_states_learner_due", "learner_id", "due"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), index=True
    )
    card_id: Mapped[str] = mapped_column(ForeignKey("cards.id", ondelete="CASCADE"))

    # FSRS state
    stability: Mapped[float] = mapped_column(Float)
    difficulty: Mapped[float] = mapped_column(Float)
    state: Mapped[str] = mapped_column(String(20), default="new")
    scheduled_days: Mapped[int] = mapped_column(Integer, default=0)

    # Scheduling
    due: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    last_reviewed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    # Counters
    repetitions: Mapped[int] = mapped_column(Integer, default=0)
    lapses: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utc_now, onupdate=_utc_now
    )

    card: Mapped["Card"] = relationship()


# ===========================================
# Review History
# ===========================================


class ReviewEvent(Base):
    """
    Immutable record of one review.

    Ordering by (reviewed_at, id) is authoritative per (learner, card). The
    previous_* columns snapshot the cache row as it was before the review.

    Attributes:
        id: Primary key (insertion order breaks reviewed_at ties).
        learner_id: Reviewing learner.
        card_id: Reviewed card.
        session_id: Optional practice session that produced the review.
        review_type: Exercise family (vocabulary, listening, ...).
        rating: FSRS rating (1=Again, 2=Hard, 3=Good, 4=Easy).
        response_time_ms: Optional response latency.
        reviewed_at: When the review occurred.
        previous_state: Lifecycle tag before the review.
        previous_stability: Stability before the review.
        previous_difficulty: Difficulty before the review.
        previous_due: Due date before the review.
        previous_last_reviewed: Last review timestamp before the review.
    """

    __tablename__ = "review_events"
    __table_args__ = (
        Index(
            "ix_review_events_learner_card_reviewed_at",
            "learner_id",
            "card_id",
            "reviewed_at",
        ),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True
    )
    learner_id: Mapped[str] = mapped_column(String(36), index=True)
    card_id: Mapped[str] = mapped_column(String(36))
    session_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    review_type: Mapped[str] = mapped_column(String(20), default="vocabulary")

    # Review details
    rating: Mapped[int] = mapped_column(Integer)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer)
    reviewed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)

    # Pre-update snapshot
    previous_state: Mapped[Optional[str]] = mapped_column(String(20))
    previous_stability: Mapped[Optional[float]] = mapped_column(Float)
    previous_difficulty: Mapped[Optional[float]] = mapped_column(Float)
    previous_due: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    previous_last_reviewed: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)


# ===========================================
# Memory Model Parameters
# ===========================================


class LearnerModelParameters(Base):
    """
    Versioned FSRS parameter vector for a learner.

    At most one row per learner has is_active=True. The partial unique index
    makes a second active row a constraint violation, so the flip from old to
    new must happen inside one transaction.

    Attributes:
        id: Primary key.
        learner_id: Owning learner.
        weights: FSRS parameter vector (JSON list of floats).
        version: Monotonic version number per learner.
        training_set_size: Number of review events used for fitting.
        optimization_score: Optional fit quality reported by the optimizer.
        last_optimized: When this version was produced.
        is_active: Whether the scheduler uses this version.
    """

    __tablename__ = "learner_model_parameters"
    __table_args__ = (
        Index(
            "uq_learner_model_parameters_active",
            "learner_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.id", ondelete="CASCADE"), index=True
    )
    weights: Mapped[List[float]] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    training_set_size: Mapped[Optional[int]] = mapped_column(Integer)
    optimization_score: Mapped[Optional[float]] = mapped_column(Float)
    last_optimized: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


# ===========================================
# Jobs
# ===========================================


class Job(Base):
    """
    Handle for a deferred operation run by the job runner.

    Attributes:
        id: UUID string primary key, returned to callers as the job handle.
        job_type: Operation (initialize_card_states, rebuild_fsrs_cache, ...).
        status: pending, running, completed, failed or skipped.
        payload: Operation arguments (learner_id, deck_id).
        result: Result payload on completion or skip.
        error: Error message on failure.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    job_type: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    payload: Mapped[dict] = mapped_column(JSON)
    result: Mapped[Optional[dict]] = mapped_column(JSON)
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utc_now, onupdate=_utc_now
    )
