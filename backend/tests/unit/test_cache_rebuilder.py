"""
Unit tests for CacheRebuilder.

The central property: a rebuilt row equals the row the recorder wrote for
the same history, and rebuilding twice changes nothing.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import select

from recall.db.models_learning import LearnerCardState
from recall.enums.learning import CardState, Rating
from recall.services.learning.cache_rebuilder import CacheRebuilder
from recall.services.learning.fsrs import FSRSMemoryModel
from recall.services.learning.parameter_store import ParameterStore
from recall.services.learning.review_recorder import ReviewRecorder
from recall.services.learning.state_cache import StateCache
from tests.factories import (
    REFERENCE_TIME,
    seed_assignment,
    seed_deck,
    seed_events,
    seed_learner,
    seed_state,
)


def _snapshot(rows):
    """Comparable view of cache rows, keyed by card."""
    return {
        row.card_id: (
            row.state,
            round(row.stability, 9),
            round(row.difficulty, 9),
            row.scheduled_days,
            row.due,
            row.last_reviewed,
            row.repetitions,
            row.lapses,
        )
        for row in rows
    }


async def _record_at(recorder, moments):
    """Record (learner_id, card_id, rating, when) reviews at fixed times."""
    with patch("recall.services.learning.review_recorder.datetime") as mock_dt:
        for learner_id, card_id, rating, when in moments:
            mock_dt.now.return_value = when
            await recorder.record_review(learner_id, card_id, rating)


class TestRebuild:
    """Tests for regenerating the cache from history."""

    @pytest.mark.asyncio
    async def test_zero_history_keeps_new_rows(self, db_session, enrolled_learner):
        """Test cards without history rebuild to their NEW baseline."""
        learner_id = enrolled_learner["learner_id"]

        result = await CacheRebuilder(db_session).rebuild(learner_id)

        rows = await StateCache(db_session).all_rows(learner_id)
        assert result.rows_rebuilt == 3
        assert result.rows_replayed == 0
        assert result.rows_baseline == 3
        assert {row.state for row in rows} == {CardState.NEW.value}
        assert all(row.due == REFERENCE_TIME for row in rows)
        assert all(row.repetitions == 0 and row.last_reviewed is None for row in rows)

    @pytest.mark.asyncio
    async def test_matches_recorded_states(self, db_session, enrolled_learner):
        """Test replaying history reproduces what the recorder wrote."""
        learner_id = enrolled_learner["learner_id"]
        c0, c1, _ = enrolled_learner["card_ids"]
        t0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

        await _record_at(
            ReviewRecorder(db_session),
            [
                (learner_id, c0, Rating.GOOD, t0),
                (learner_id, c1, Rating.EASY, t0 + timedelta(hours=1)),
                (learner_id, c0, Rating.AGAIN, t0 + timedelta(days=3)),
                (learner_id, c0, Rating.GOOD, t0 + timedelta(days=4, hours=2)),
                (learner_id, c1, Rating.HARD, t0 + timedelta(days=12)),
            ],
        )
        recorded = _snapshot(await StateCache(db_session).all_rows(learner_id))

        result = await CacheRebuilder(db_session).rebuild(learner_id)

        rebuilt = _snapshot(await StateCache(db_session).all_rows(learner_id))
        assert rebuilt == recorded
        assert result.rows_replayed == 2
        assert rebuilt[c0][6:] == (3, 1)

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, db_session, enrolled_learner):
        """Test a second rebuild with unchanged history changes nothing."""
        learner_id = enrolled_learner["learner_id"]
        card_id = enrolled_learner["card_ids"][1]
        await seed_events(db_session, learner_id, card_id, [3, 3, 1, 4])
        rebuilder = CacheRebuilder(db_session)

        await rebuilder.rebuild(learner_id)
        first = _snapshot(await StateCache(db_session).all_rows(learner_id))
        await rebuilder.rebuild(learner_id)
        second = _snapshot(await StateCache(db_session).all_rows(learner_id))

        assert first == second

    @pytest.mark.asyncio
    async def test_repairs_drifted_rows(self, db_session, enrolled_learner):
        """Test a corrupted cache row is restored from history."""
        learner_id = enrolled_learner["learner_id"]
        card_id = enrolled_learner["card_ids"][0]
        await seed_events(db_session, learner_id, card_id, [3, 3])
        rebuilder = CacheRebuilder(db_session)
        await rebuilder.rebuild(learner_id)
        expected = _snapshot(await StateCache(db_session).all_rows(learner_id))

        row = await StateCache(db_session).get(learner_id, card_id)
        row.stability = 99.0
        row.lapses = 7
        await db_session.commit()
        await rebuilder.rebuild(learner_id)

        assert _snapshot(await StateCache(db_session).all_rows(learner_id)) == expected

    @pytest.mark.asyncio
    async def test_due_is_last_review_plus_interval(self, db_session, enrolled_learner):
        learner_id = enrolled_learner["learner_id"]
        card_id = enrolled_learner["card_ids"][0]
        events = await seed_events(db_session, learner_id, card_id, [3, 2, 3], gap_days=5)

        await CacheRebuilder(db_session).rebuild(learner_id)

        row = await StateCache(db_session).get(learner_id, card_id)
        assert row.last_reviewed == events[-1].reviewed_at
        assert row.due == events[-1].reviewed_at + timedelta(days=row.scheduled_days)
        assert row.state == CardState.REVIEW.value
        assert row.repetitions == 3

    @pytest.mark.asyncio
    async def test_last_again_is_relearning(self, db_session, enrolled_learner):
        learner_id = enrolled_learner["learner_id"]
        card_id = enrolled_learner["card_ids"][0]
        await seed_events(db_session, learner_id, card_id, [1, 3, 1])

        await CacheRebuilder(db_session).rebuild(learner_id)

        row = await StateCache(db_session).get(learner_id, card_id)
        assert row.state == CardState.RELEARNING.value
        assert row.lapses == 2

    @pytest.mark.asyncio
    async def test_ignores_history_of_unassigned_cards(self, db_session, enrolled_learner):
        """Test events for cards outside the learner's decks create no rows."""
        learner_id = enrolled_learner["learner_id"]
        await seed_deck(db_session, "deck-2", size=1)
        await seed_events(db_session, learner_id, "deck-2-card-0", [3, 3])

        result = await CacheRebuilder(db_session).rebuild(learner_id)

        rows = await StateCache(db_session).all_rows(learner_id)
        assert result.rows_rebuilt == 3
        assert "deck-2-card-0" not in {row.card_id for row in rows}

    @pytest.mark.asyncio
    async def test_drops_rows_of_unassigned_cards(self, db_session, enrolled_learner):
        """Test stale rows for cards no longer assigned are removed."""
        learner_id = enrolled_learner["learner_id"]
        await seed_deck(db_session, "deck-2", size=1)
        await seed_state(db_session, learner_id, "deck-2-card-0")

        await CacheRebuilder(db_session).rebuild(learner_id)

        rows = await StateCache(db_session).all_rows(learner_id)
        assert [row.card_id for row in rows] == enrolled_learner["card_ids"]

    @pytest.mark.asyncio
    async def test_creates_missing_rows(self, db_session, enrolled_learner):
        """Test assigned cards without a row get one, from history if any."""
        learner_id = enrolled_learner["learner_id"]
        cards = await seed_deck(db_session, "deck-2", size=2)
        await seed_assignment(db_session, learner_id, "deck-2")
        await seed_events(db_session, learner_id, cards[0].id, [4])

        result = await CacheRebuilder(db_session).rebuild(learner_id)

        reviewed = await StateCache(db_session).get(learner_id, cards[0].id)
        fresh = await StateCache(db_session).get(learner_id, cards[1].id)
        assert result.rows_rebuilt == 5
        assert reviewed.state == CardState.REVIEW.value
        assert fresh.state == CardState.NEW.value

    @pytest.mark.asyncio
    async def test_uses_active_parameters(self, db_session, enrolled_learner):
        """Test the rebuild builds its model from the learner's weights."""
        learner_id = enrolled_learner["learner_id"]
        weights = [0.5] * 21
        await ParameterStore(db_session).activate_new_version(learner_id, weights, 60)
        await db_session.commit()
        seen = []

        def factory(parameters):
            seen.append(parameters)
            return FSRSMemoryModel()

        await CacheRebuilder(db_session, model_factory=factory).rebuild(learner_id)

        assert seen == [weights]

    @pytest.mark.asyncio
    async def test_other_learners_untouched(self, db_session, enrolled_learner):
        other = await seed_learner(db_session, "learner-2")
        await seed_state(db_session, other.id, enrolled_learner["card_ids"][0])

        await CacheRebuilder(db_session).rebuild(enrolled_learner["learner_id"])

        result = await db_session.execute(
            select(LearnerCardState).where(LearnerCardState.learner_id == other.id)
        )
        assert len(result.scalars().all()) == 1
