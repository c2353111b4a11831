"""
Async SQLAlchemy engine and session lifecycle.

PostgreSQL (asyncpg) in production, where Alembic owns the schema.  SQLite
(aiosqlite) for local development, where the tables are created on startup
so a fresh checkout runs without a migration step.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from scorebook.config import settings

logger = logging.getLogger(__name__)

DEFAULT_SQLITE_URL = "sqlite+aiosqlite:///./data/scorebook.db"


class Base(DeclarativeBase):
    """Declarative base for the ``scores`` and ``snapshots`` tables."""


# Set by init_db() on startup, cleared by close_db()
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Return the configured database URL, falling back to the local SQLite file."""
    if settings.database_url:
        return settings.database_url
    logger.warning("⚠️ SCOREBOOK_DATABASE_URL not set, using SQLite: %s", DEFAULT_SQLITE_URL)
    return DEFAULT_SQLITE_URL


def _redact(database_url: str) -> str:
    return make_url(database_url).render_as_string(hide_password=True)


def _prepare_sqlite_file(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    database = make_url(database_url).database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


async def init_db() -> None:
    """Create the engine and session factory; on SQLite, also create the tables."""
    global _engine, _async_session_factory

    database_url = get_database_url()
    is_sqlite = database_url.startswith("sqlite")
    logger.info("Initializing database: %s", _redact(database_url))

    connect_args: dict[str, Any] = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
        _prepare_sqlite_file(database_url)

    _engine = create_async_engine(
        database_url,
        echo=settings.debug,
        connect_args=connect_args,
    )
    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Registers the mappers on Base.metadata.
    from scorebook.db import models  # noqa: F401

    if is_sqlite:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ SQLite schema ensured")

    logger.info("✅ Database initialized")


async def close_db() -> None:
    """Dispose of the engine."""
    global _engine, _async_session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connection closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request.

    Commits when the handler returns normally, rolls back when it raises.
    Services that need an earlier commit (the sync engine) commit themselves.
    """
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
