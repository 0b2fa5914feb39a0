"""
Unit tests for job handles and the background job runner.

The runner is exercised through _run_job_impl with sessions on the SQLite
test database and a recording dispatcher in place of Celery.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from tenacity import wait_none

from recall.db.models_learning import Job
from recall.enums.learning import JobStatus, JobType, LearnerStatus, OptimizationStatus
from recall.models.learning import OptimizationResult, RebuildResult
from recall.services.learning.errors import ConcurrencyConflict, NotFoundError
from recall.services.learning.jobs import JobService, celery_dispatcher
from recall.services.learning.state_cache import StateCache
from recall.services.queue import celery_app
from recall.services.tasks import _execute_job, _run_job_impl, run_job
from tests.factories import seed_deck, seed_events, seed_learner


async def _create_job(session, job_type, payload):
    return await JobService(session, dispatcher=MagicMock()).create_job(
        job_type, payload, dispatch=False
    )


async def _load_job(session_maker, job_id):
    async with session_maker() as session:
        return await session.get(Job, job_id)


class TestJobService:
    """Tests for job handle persistence."""

    @pytest.mark.asyncio
    async def test_create_dispatches_after_commit(self, db_session, recording_dispatcher):
        jobs = JobService(db_session, dispatcher=recording_dispatcher)

        job = await jobs.create_job(JobType.REBUILD_FSRS_CACHE, {"learner_id": "l-1"})

        assert job.status == JobStatus.PENDING.value
        recording_dispatcher.assert_called_once_with(job.id, JobType.REBUILD_FSRS_CACHE)

    @pytest.mark.asyncio
    async def test_create_without_dispatch(self, db_session, recording_dispatcher):
        jobs = JobService(db_session, dispatcher=recording_dispatcher)

        await jobs.create_job(JobType.REBUILD_FSRS_CACHE, {"learner_id": "l-1"}, dispatch=False)

        recording_dispatcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_status(self, db_session):
        jobs = JobService(db_session, dispatcher=MagicMock())
        job = await jobs.create_job(JobType.OPTIMIZE_FSRS_PARAMS, {"learner_id": "l-1"})

        await jobs.update_status(job.id, JobStatus.FAILED, error="boom")

        failed = await jobs.get_job(job.id)
        assert failed.status == JobStatus.FAILED.value
        assert failed.error == "boom"
        assert JobStatus(failed.status).is_terminal

    @pytest.mark.asyncio
    async def test_unknown_job(self, db_session):
        with pytest.raises(NotFoundError):
            await JobService(db_session).get_job("missing")

    def test_celery_dispatcher_routes_by_type(self):
        """Test optimization jobs go to their own task, everything else to run_job."""
        with patch("recall.services.tasks.run_job") as run, patch(
            "recall.services.tasks.run_optimization_job"
        ) as optimize:
            celery_dispatcher("job-1", JobType.OPTIMIZE_FSRS_PARAMS)
            celery_dispatcher("job-2", JobType.REBUILD_FSRS_CACHE)
            celery_dispatcher("job-3", JobType.INITIALIZE_CARD_STATES)

        optimize.delay.assert_called_once_with("job-1")
        assert [c.args for c in run.delay.call_args_list] == [("job-2",), ("job-3",)]


class TestRunJob:
    """Tests for the job runner lifecycle."""

    @pytest.mark.asyncio
    async def test_rebuild_job_completes(
        self, db_session, session_maker, recording_dispatcher, enrolled_learner
    ):
        learner_id = enrolled_learner["learner_id"]
        await seed_events(db_session, learner_id, enrolled_learner["card_ids"][0], [3, 4])
        job = await _create_job(db_session, JobType.REBUILD_FSRS_CACHE, {"learner_id": learner_id})

        outcome = await _run_job_impl(
            job.id, dispatcher=recording_dispatcher, session_maker=session_maker
        )

        stored = await _load_job(session_maker, job.id)
        assert outcome["status"] == JobStatus.COMPLETED.value
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.result["rows_rebuilt"] == 3
        assert stored.result["rows_replayed"] == 1

    @pytest.mark.asyncio
    async def test_initialize_job_creates_rows(self, db_session, session_maker):
        learner = await seed_learner(db_session)
        await seed_deck(db_session, "deck-7", size=4)
        job = await _create_job(
            db_session,
            JobType.INITIALIZE_CARD_STATES,
            {"learner_id": learner.id, "deck_id": "deck-7"},
        )

        outcome = await _run_job_impl(job.id, session_maker=session_maker)

        async with session_maker() as session:
            rows = await StateCache(session).all_rows(learner.id)
        assert outcome["result"]["cards_initialized"] == 4
        assert len(rows) == 4

    @pytest.mark.asyncio
    async def test_ineligible_learner_is_skipped(self, db_session, session_maker):
        learner = await seed_learner(db_session, status=LearnerStatus.PAUSED)
        job = await _create_job(db_session, JobType.REBUILD_FSRS_CACHE, {"learner_id": learner.id})

        outcome = await _run_job_impl(job.id, session_maker=session_maker)

        stored = await _load_job(session_maker, job.id)
        assert outcome["status"] == JobStatus.SKIPPED.value
        assert stored.status == JobStatus.SKIPPED.value
        assert "not active" in stored.result["reason"]

    @pytest.mark.asyncio
    async def test_missing_learner_id_fails(self, db_session, session_maker):
        job = await _create_job(db_session, JobType.REBUILD_FSRS_CACHE, {})

        outcome = await _run_job_impl(job.id, session_maker=session_maker)

        stored = await _load_job(session_maker, job.id)
        assert outcome["status"] == JobStatus.FAILED.value
        assert "learner_id" in stored.error

    @pytest.mark.asyncio
    async def test_finished_job_is_not_rerun(self, db_session, session_maker, enrolled_learner):
        jobs = JobService(db_session, dispatcher=MagicMock())
        job = await jobs.create_job(
            JobType.REBUILD_FSRS_CACHE, {"learner_id": enrolled_learner["learner_id"]}
        )
        await jobs.update_status(job.id, JobStatus.COMPLETED, result={"rows_rebuilt": 0})

        with patch("recall.services.tasks._execute_job") as execute:
            outcome = await _run_job_impl(job.id, session_maker=session_maker)

        execute.assert_not_called()
        assert outcome["status"] == JobStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_optimization_with_little_history_is_skipped(
        self, db_session, session_maker, recording_dispatcher, enrolled_learner
    ):
        learner_id = enrolled_learner["learner_id"]
        job = await _create_job(db_session, JobType.OPTIMIZE_FSRS_PARAMS, {"learner_id": learner_id})

        outcome = await _run_job_impl(
            job.id, dispatcher=recording_dispatcher, session_maker=session_maker
        )

        assert outcome["status"] == JobStatus.SKIPPED.value
        assert outcome["result"]["status"] == OptimizationStatus.SKIPPED.value
        recording_dispatcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_optimization_queues_rebuild(
        self, db_session, session_maker, recording_dispatcher, enrolled_learner
    ):
        """Test an optimized learner gets a follow-up cache rebuild job."""
        learner_id = enrolled_learner["learner_id"]
        job = await _create_job(db_session, JobType.OPTIMIZE_FSRS_PARAMS, {"learner_id": learner_id})
        optimized = OptimizationResult(
            learner_id=learner_id,
            status=OptimizationStatus.OPTIMIZED,
            message="ok",
            review_count=80,
            version=2,
            weights=[0.1] * 21,
        )

        with patch("recall.services.tasks.ParameterOptimizer") as optimizer_cls:
            optimizer_cls.return_value.optimize = AsyncMock(return_value=optimized)
            outcome = await _run_job_impl(
                job.id, dispatcher=recording_dispatcher, session_maker=session_maker
            )

        rebuild_id = outcome["result"]["rebuild_job_id"]
        rebuild = await _load_job(session_maker, rebuild_id)
        assert outcome["status"] == JobStatus.COMPLETED.value
        assert rebuild.job_type == JobType.REBUILD_FSRS_CACHE.value
        assert rebuild.payload == {"learner_id": learner_id}
        recording_dispatcher.assert_called_once_with(rebuild_id, JobType.REBUILD_FSRS_CACHE)

    @pytest.mark.asyncio
    async def test_failure_marks_job_failed(self, db_session, session_maker, enrolled_learner):
        """Test an unexpected error fails the job and is re-raised."""
        job = await _create_job(
            db_session,
            JobType.REBUILD_FSRS_CACHE,
            {"learner_id": enrolled_learner["learner_id"]},
        )

        with patch("recall.services.tasks.CacheRebuilder") as rebuilder_cls:
            rebuilder_cls.return_value.rebuild = AsyncMock(side_effect=RuntimeError("boom"))
            with pytest.raises(RuntimeError):
                await _run_job_impl(job.id, session_maker=session_maker)

        stored = await _load_job(session_maker, job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.error == "boom"

    @pytest.mark.asyncio
    async def test_conflicts_are_retried(self, db_session, session_maker, enrolled_learner):
        """Test a concurrency conflict is retried before the job is settled."""
        learner_id = enrolled_learner["learner_id"]
        job = await _create_job(db_session, JobType.REBUILD_FSRS_CACHE, {"learner_id": learner_id})
        rebuilt = RebuildResult(
            learner_id=learner_id, rows_rebuilt=3, rows_replayed=0, rows_baseline=3
        )

        with patch("recall.services.tasks.CacheRebuilder") as rebuilder_cls, patch.object(
            _execute_job.retry, "wait", wait_none()
        ):
            rebuilder_cls.return_value.rebuild = AsyncMock(
                side_effect=[ConcurrencyConflict("busy"), rebuilt]
            )
            outcome = await _run_job_impl(job.id, session_maker=session_maker)

        assert outcome["status"] == JobStatus.COMPLETED.value
        assert rebuilder_cls.return_value.rebuild.await_count == 2


class TestCeleryTasks:
    """Tests for the Celery entry points and routing."""

    def test_run_job_runs_impl(self):
        with patch(
            "recall.services.tasks._run_job_impl",
            AsyncMock(return_value={"job_id": "j-1", "status": "completed", "result": {}}),
        ) as impl:
            result = run_job("j-1")

        impl.assert_awaited_once_with("j-1")
        assert result["status"] == "completed"

    def test_routes(self):
        routes = celery_app.conf.task_routes

        assert routes["recall.services.tasks.run_job"] == {"queue": "fsrs_maintenance"}
        assert routes["recall.services.tasks.run_optimization_job"] == {
            "queue": "fsrs_optimization"
        }
