"""
Scheduling Core Errors

Error taxonomy of the scheduling core. All errors are ServiceErrors, so the
API middleware renders them with their status code and retryability.

- IntegrityError / NoPriorStateError: review for an uninitialized card.
  Fatal, never auto-repaired.
- ValidationError: rating outside 1-4 or malformed context. Raised before
  any mutation.
- ConcurrencyConflict: lock contention or lost update. Retryable.
- RebuildInProgressError: review attempted while the learner's cache is
  being rebuilt. Retryable.
- InsufficientDataError: not enough history to fit parameters. A status,
  reported by the optimizer as a skip.
- NotFoundError: unknown learner or job.
"""

from typing import Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

from recall.middleware.error_handling import ServiceError


class IntegrityError(ServiceError):
    """Cache and history disagree with what the caller assumed exists."""

    status_code = 409
    error_code = "integrity_error"


class NoPriorStateError(IntegrityError):
    """
    No cache row exists for the reviewed (learner, card) pair.

    A card must be initialized (assigned) before it can be reviewed. The row
    is never created on the fly: that would hide an assignment bug.
    """

    error_code = "no_prior_state"

    def __init__(self, learner_id: str, card_id: str):
        super().__init__(
            f"Card state not found for learner {learner_id} and card {card_id}",
            details={"learner_id": learner_id, "card_id": card_id},
        )
        self.learner_id = learner_id
        self.card_id = card_id


class ValidationError(ServiceError):
    """Input rejected before any mutation."""

    status_code = 422
    error_code = "validation_error"


class ConcurrencyConflict(ServiceError):
    """Concurrent writers collided on the same row."""

    status_code = 409
    error_code = "concurrency_conflict"
    retryable = True


class RebuildInProgressError(ServiceError):
    """The learner's cache is locked by a running rebuild."""

    status_code = 423
    error_code = "rebuild_in_progress"
    retryable = True

    def __init__(self, learner_id: str):
        super().__init__(
            f"Cache rebuild in progress for learner {learner_id}",
            details={"learner_id": learner_id},
        )
        self.learner_id = learner_id


class InsufficientDataError(ServiceError):
    """Not enough review history for the requested operation."""

    status_code = 409
    error_code = "insufficient_data"


class NotFoundError(ServiceError):
    """Requested resource doesn't exist."""

    status_code = 404
    error_code = "not_found"


# PostgreSQL SQLSTATEs that mean "another writer got there first"
# 40001 serialization_failure, 40P01 deadlock_detected, 55P03 lock_not_available
CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
UNIQUE_VIOLATION = "23505"


def conflict_from_db_error(
    exc: Exception, *, unique_violation: bool = False
) -> Optional[ConcurrencyConflict]:
    """
    Translate a driver/ORM error into a ConcurrencyConflict if it is one.

    Recognizes lost updates (StaleDataError) and PostgreSQL lock or
    serialization failures. Returns None for anything else, which the caller
    re-raises unchanged.

    Args:
        exc: The caught exception
        unique_violation: Also treat 23505 as a conflict. Only for writes
            where a duplicate key means a concurrent writer won, such as the
            parameter version flip.
    """
    conflict_codes = CONFLICT_SQLSTATES
    if unique_violation:
        conflict_codes = conflict_codes | {UNIQUE_VIOLATION}

    if isinstance(exc, StaleDataError):
        return ConcurrencyConflict(f"Row changed concurrently: {exc}")

    if isinstance(exc, DBAPIError):
        orig = exc.orig
        for source in (orig, getattr(orig, "__cause__", None)):
            code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
            if code in conflict_codes:
                return ConcurrencyConflict(
                    f"Concurrent update conflict ({code})",
                    details={"sqlstate": code},
                )
    return None
