"""
Integration Test Fixtures

Fixtures for tests that need a real PostgreSQL database (advisory locks and
row locking have no SQLite equivalent).

IMPORTANT: Integration tests use the TEST database only (POSTGRES_TEST_* env
vars). A safety check runs at session start and fails fast if production
credentials are detected. Tests are skipped when the database is unreachable.

Run with:
    pytest backend/tests/integration -m integration
"""

import os
from pathlib import Path
from typing import AsyncGenerator
from urllib.parse import quote_plus

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from recall.db.base import Base

_project_root = Path(__file__).parent.parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

pytestmark = pytest.mark.integration

# Truncated between tests, children first
TABLES = [
    "jobs",
    "learner_model_parameters",
    "review_events",
    "learner_card_states",
    "deck_assignments",
    "cards",
    "learners",
]


@pytest.fixture(scope="session", autouse=True)
def verify_test_database():
    """
    Safety check: refuse to run against something that looks like production.

    Set ALLOW_PROD_DB_TESTS=1 to skip this check (local development only).
    """
    if os.environ.get("ALLOW_PROD_DB_TESTS", "").lower() in ("1", "true", "yes"):
        return

    config = get_test_db_config()
    for indicator in ("prod", "production"):
        assert indicator not in config["db"].lower(), (
            f"SAFETY CHECK FAILED: Database name '{config['db']}' looks like production! "
            "Set POSTGRES_TEST_DB or ALLOW_PROD_DB_TESTS=1."
        )


def get_test_db_config() -> dict:
    """
    Test database configuration.

    Priority: POSTGRES_TEST_* > POSTGRES_* > defaults
    """
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": os.environ.get("POSTGRES_PORT", "5432"),
        "user": os.environ.get("POSTGRES_TEST_USER", os.environ.get("POSTGRES_USER", "testuser")),
        "password": os.environ.get(
            "POSTGRES_TEST_PASSWORD", os.environ.get("POSTGRES_PASSWORD", "testpass")
        ),
        "db": os.environ.get("POSTGRES_TEST_DB", os.environ.get("POSTGRES_DB", "testdb")),
    }


def get_test_db_url() -> str:
    config = get_test_db_config()
    encoded_password = quote_plus(config["password"])
    return (
        f"postgresql+asyncpg://{config['user']}:{encoded_password}"
        f"@{config['host']}:{config['port']}/{config['db']}"
    )


@pytest_asyncio.fixture
async def pg_engine():
    """
    Engine on the test database with the schema in place and tables emptied.

    A fresh engine per test keeps connections on the test's event loop.
    """
    engine = create_async_engine(get_test_db_url(), echo=False)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OSError, DBAPIError) as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL test database unavailable: {e}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(f"TRUNCATE TABLE {', '.join(TABLES)} CASCADE"))

    yield engine

    await engine.dispose()


@pytest.fixture
def pg_session_maker(pg_engine) -> async_sessionmaker:
    return async_sessionmaker(pg_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def pg_session(pg_session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with pg_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
