"""
Per-learner advisory locks.

Reviews and cache rebuilds for the same learner must not interleave. Both
take a transaction-scoped PostgreSQL advisory lock on a key derived from the
learner id: reviews in shared mode (they only conflict with rebuilds, row
locks serialize reviews of the same card), rebuilds in exclusive mode.

Locks are released automatically at commit or rollback. On dialects without
advisory locks (SQLite in tests) acquisition always succeeds.

Usage:
    acquired = await acquire_learner_lock(db, learner_id, shared=True, wait=False)
    if not acquired:
        raise RebuildInProgressError(...)
"""

import hashlib
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_LOCK_NAMESPACE = "recall:learner:"


def learner_lock_key(learner_id: str) -> int:
    """Stable signed 64-bit advisory lock key for a learner."""
    digest = hashlib.blake2b(
        f"{_LOCK_NAMESPACE}{learner_id}".encode(), digest_size=8
    ).digest()
    return int.from_bytes(digest, "big", signed=True)


def supports_advisory_locks(db: AsyncSession) -> bool:
    return db.get_bind().dialect.name == "postgresql"


async def acquire_learner_lock(
    db: AsyncSession,
    learner_id: str,
    *,
    shared: bool = False,
    wait: bool = True,
) -> bool:
    """
    Acquire the learner's advisory lock for the current transaction.

    Args:
        db: Session with an open (or auto-begun) transaction
        learner_id: Learner to lock
        shared: Take the lock in shared mode (reviews) instead of exclusive
            mode (rebuilds)
        wait: Block until the lock is available. When False, return False
            immediately if it is held in a conflicting mode.

    Returns:
        True if the lock is held by this transaction
    """
    if not supports_advisory_locks(db):
        return True

    suffix = "_shared" if shared else ""
    if wait:
        statement = text(f"SELECT pg_advisory_xact_lock{suffix}(:key)")
    else:
        statement = text(f"SELECT pg_try_advisory_xact_lock{suffix}(:key)")

    result = await db.execute(statement, {"key": learner_lock_key(learner_id)})
    if wait:
        return True

    acquired = bool(result.scalar())
    if not acquired:
        logger.debug(f"Advisory lock for learner {learner_id} is busy (shared={shared})")
    return acquired
