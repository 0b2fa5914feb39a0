"""Database package."""

from recall.db.base import Base, async_session_maker, get_db, task_session_maker

__all__ = ["Base", "async_session_maker", "get_db", "task_session_maker"]
