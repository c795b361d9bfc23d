"""
NoteKeeper Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine/session factories, the declarative Base, and the
       FastAPI session dependency.
How:   `create_engine()` builds one async engine per process from Settings;
       `create_session_factory()` wraps it. The service container owns both and
       disposes the engine on shutdown.
Who:   The API (one session per request via `get_db_session`) and the store
       adapters (one short-lived session per store call via `session_scope`).

Connection Pooling:
    pool_size / max_overflow / pool_pre_ping come from Settings and are only
    passed for server databases. SQLite (used by the test-suite) manages its
    own pool and rejects those arguments.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from notekeeper.config import Settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Registers every model with one shared metadata object, which Alembic reads
    for migrations and the test-suite uses for `create_all`.
    """
    pass


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine for `settings.database_url`."""
    kwargs = {
        "echo": settings.log_level == "DEBUG",
        "pool_pre_ping": settings.db_pool_pre_ping,
    }
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=3600,
        )
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: ORM objects stay readable after the session commits
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Unit-of-work context: commit on success, roll back on any error.

    Example:
        async with session_scope(self._session_factory) as session:
            session.add(row)
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session factory lives on the service container attached to
    `app.state` at startup. The transaction commits when the handler returns
    and rolls back if it raises; the exception is re-raised for the global
    handlers.

    Example usage in a route:
        @router.get("/notes")
        async def list_notes(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    factory = request.app.state.container.session_factory
    async with session_scope(factory) as session:
        yield session
