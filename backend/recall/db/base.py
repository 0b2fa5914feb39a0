"""
Engines, sessions and the declarative base.

Two session factories share one database:
- async_session_maker: pooled, used by the API (one event loop for the
  process lifetime)
- task_session_maker: NullPool, used by Celery tasks. Each task runs in its
  own asyncio.run() loop, and pooled asyncpg connections can't outlive the
  loop that opened them.

Usage:
    async with async_session_maker() as session:
        await session.execute(...)

    # FastAPI
    async def route(db: AsyncSession = Depends(get_db)): ...
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from sqlalchemy.types import TypeDecorator

from recall.config import settings, yaml_config

_pool: dict[str, Any] = yaml_config.get("database", {})

engine = create_async_engine(
    settings.POSTGRES_URL,
    pool_size=_pool.get("pool_size", 5),
    max_overflow=_pool.get("max_overflow", 10),
    pool_timeout=_pool.get("pool_timeout", 30),
    pool_pre_ping=True,
    echo=settings.DEBUG,
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

task_engine = create_async_engine(settings.POSTGRES_URL, poolclass=NullPool, echo=settings.DEBUG)
task_session_maker = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime column.

    PostgreSQL returns aware datetimes for TIMESTAMP WITH TIME ZONE, SQLite
    returns naive ones. Values are normalized to aware UTC in both directions
    so scheduling arithmetic never mixes naive and aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        return as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        return as_utc(value)


class Base(DeclarativeBase):
    """Declarative base of the scheduling tables."""


# Registers the tables on Base.metadata; must follow the Base definition
from recall.db import models_learning  # noqa: F401, E402


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Services commit their own units of work; anything
    left pending when the request ends is committed, or rolled back on error.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
