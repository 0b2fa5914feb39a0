"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across unit and integration tests.

Unit tests run against a throwaway SQLite database (aiosqlite) created from
the ORM metadata, so they need neither PostgreSQL nor Redis. Advisory locks
are no-ops on SQLite; lock behavior is covered by the integration suite.
"""

import os
import sys
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
# This ensures POSTGRES_TEST_* variables are available
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try backend directory
    _backend_env = Path(__file__).parent.parent / ".env"
    if _backend_env.exists():
        load_dotenv(_backend_env)

from recall.db.base import Base  # noqa: E402
from tests.factories import (  # noqa: E402
    REFERENCE_TIME,
    seed_assignment,
    seed_deck,
    seed_learner,
    seed_state,
)


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    This ensures tests run with predictable configuration, overriding
    any values from .env files to ensure test isolation.
    """
    # Store original environment
    original_env = os.environ.copy()

    test_env = {
        "POSTGRES_HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "POSTGRES_PORT": os.environ.get("POSTGRES_PORT", "5432"),
        "POSTGRES_USER": os.environ.get("POSTGRES_TEST_USER", "testuser"),
        "POSTGRES_PASSWORD": os.environ.get("POSTGRES_TEST_PASSWORD", "testpass"),
        "POSTGRES_DB": os.environ.get("POSTGRES_TEST_DB", "testdb"),
        "CELERY_BROKER_URL": os.environ.get(
            "CELERY_BROKER_URL", "redis://localhost:6379/15"
        ),
        "DEBUG": "true",
    }
    os.environ.update(test_env)

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_db_session() -> MagicMock:
    """
    Create a mock database session for unit testing.
    """
    mock = MagicMock()
    mock.execute = AsyncMock()
    mock.commit = AsyncMock()
    mock.rollback = AsyncMock()
    mock.flush = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def recording_dispatcher() -> MagicMock:
    """Job dispatcher that records hand-offs instead of queueing on Celery."""
    return MagicMock()


# ============================================================================
# SQLite Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path):
    """
    Async engine on a per-test SQLite file with every table created.

    A file (rather than :memory:) lets several sessions share the database,
    which the job runner tests need.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'recall.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker:
    """Session factory bound to the test database."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Session for one test."""
    async with session_maker() as session:
        yield session


# ============================================================================
# Seeded Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def enrolled_learner(db_session: AsyncSession) -> dict:
    """
    Active learner with one assigned 3-card deck and NEW rows for its cards.

    Returns:
        Dict with learner_id, deck_id and card_ids
    """
    learner = await seed_learner(db_session)
    cards = await seed_deck(db_session, "deck-1", size=3)
    await seed_assignment(db_session, learner.id, "deck-1")
    for card in cards:
        await seed_state(db_session, learner.id, card.id, due=REFERENCE_TIME)
    return {
        "learner_id": learner.id,
        "deck_id": "deck-1",
        "card_ids": [card.id for card in cards],
    }
