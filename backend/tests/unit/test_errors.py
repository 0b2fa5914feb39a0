"""
Unit tests for the error taxonomy, DB error translation and advisory lock helpers.
"""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from recall.db.locks import acquire_learner_lock, learner_lock_key
from recall.middleware.error_handling import ServiceError, setup_error_handling
from recall.services.learning.errors import (
    ConcurrencyConflict,
    InsufficientDataError,
    NoPriorStateError,
    NotFoundError,
    RebuildInProgressError,
    ValidationError,
    conflict_from_db_error,
)


class TestErrorTaxonomy:
    """Tests for status codes and retryability."""

    @pytest.mark.parametrize(
        "error,status_code,retryable",
        [
            (NoPriorStateError("l-1", "c-1"), 409, False),
            (ValidationError("bad rating"), 422, False),
            (ConcurrencyConflict("busy"), 409, True),
            (RebuildInProgressError("l-1"), 423, True),
            (InsufficientDataError("too few"), 409, False),
            (NotFoundError("missing"), 404, False),
        ],
    )
    def test_status_and_retryability(self, error, status_code, retryable):
        assert isinstance(error, ServiceError)
        assert error.status_code == status_code
        assert error.retryable is retryable

    def test_no_prior_state_details(self):
        error = NoPriorStateError("l-1", "c-1")

        assert error.error_code == "no_prior_state"
        assert error.details == {"learner_id": "l-1", "card_id": "c-1"}


class TestConflictFromDbError:
    """Tests for recognizing concurrency failures in driver errors."""

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03"])
    def test_conflict_sqlstates(self, sqlstate):
        orig = MagicMock(sqlstate=sqlstate)
        conflict = conflict_from_db_error(OperationalError("stmt", {}, orig))

        assert isinstance(conflict, ConcurrencyConflict)
        assert conflict.details == {"sqlstate": sqlstate}

    def test_other_errors_pass_through(self):
        orig = MagicMock(sqlstate="23505")

        assert conflict_from_db_error(OperationalError("stmt", {}, orig)) is None
        assert conflict_from_db_error(RuntimeError("boom")) is None

    def test_unique_violation_when_requested(self):
        """Test 23505 only counts as a conflict where the caller opts in."""
        error = IntegrityError("stmt", {}, MagicMock(sqlstate="23505"))

        assert conflict_from_db_error(error) is None
        conflict = conflict_from_db_error(error, unique_violation=True)
        assert isinstance(conflict, ConcurrencyConflict)
        assert conflict.details == {"sqlstate": "23505"}

    def test_stale_data(self):
        assert isinstance(conflict_from_db_error(StaleDataError("gone")), ConcurrencyConflict)


class TestLearnerLocks:
    """Tests for advisory lock helpers that don't need PostgreSQL."""

    def test_key_is_stable_and_signed_64_bit(self):
        key = learner_lock_key("learner-1")

        assert key == learner_lock_key("learner-1")
        assert key != learner_lock_key("learner-2")
        assert -(2**63) <= key < 2**63

    @pytest.mark.asyncio
    async def test_noop_without_advisory_locks(self, db_session):
        assert await acquire_learner_lock(db_session, "learner-1", shared=True, wait=False)


def _failing_app(debug: bool) -> FastAPI:
    app = FastAPI()
    setup_error_handling(app, debug=debug)

    @app.get("/locked")
    async def locked():
        raise RebuildInProgressError("learner-1")

    @app.get("/crash")
    async def crash():
        raise RuntimeError("disk on fire")

    return app


class TestErrorHandlingMiddleware:
    """Tests for rendering errors as JSON."""

    @pytest.mark.asyncio
    async def test_retryable_service_error(self):
        transport = ASGITransport(app=_failing_app(debug=False))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/locked")

        body = response.json()
        assert response.status_code == 423
        assert response.headers["Retry-After"] == "1"
        assert body["error"] == "rebuild_in_progress"
        assert body["retryable"] is True
        assert body["details"] is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_sanitized(self):
        transport = ASGITransport(app=_failing_app(debug=False))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/crash")

        body = response.json()
        assert response.status_code == 500
        assert body["error"] == "internal_server_error"
        assert "disk on fire" not in response.text
        assert "Retry-After" not in response.headers

    @pytest.mark.asyncio
    async def test_debug_includes_details(self):
        transport = ASGITransport(app=_failing_app(debug=True))
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/locked")

        assert response.json()["details"] == {"learner_id": "learner-1"}
