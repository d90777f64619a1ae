"""
Database engine and session management.

Provides async SQLAlchemy engine creation, session factories,
and lifecycle management for the application.
"""

import os
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from huddle.database.models import Base
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def to_async_url(db_url: str) -> str:
    """``sqlite:///x.db`` -> ``sqlite+aiosqlite:///x.db``; other URLs unchanged."""
    if db_url.startswith("sqlite:///"):
        return db_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return db_url


def _get_database_url() -> str:
    """
    Get the database URL from settings or environment.

    Returns:
        str: The async-compatible database URL.
    """
    from huddle.config.settings import get_settings

    try:
        db_url = get_settings().database_url
    except ValueError:
        db_url = os.environ.get("DATABASE_URL", "sqlite:///./data/huddle.db")
    return to_async_url(db_url)


def _ensure_db_directory(db_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if "sqlite" in db_url and ":memory:" not in db_url:
        path_part = db_url.split("///")[-1]
        Path(path_part).parent.mkdir(parents=True, exist_ok=True)


def create_engine_for_url(db_url: str) -> AsyncEngine:
    """
    Build an async engine for ``db_url``.

    In-memory SQLite shares one connection so every session sees the same
    tables.
    """
    db_url = to_async_url(db_url)
    if ":memory:" in db_url:
        return create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    _ensure_db_directory(db_url)
    connect_args = {"check_same_thread": False} if "sqlite" in db_url else {}
    engine = create_async_engine(
        db_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    # Enable WAL mode for file-backed SQLite
    if "sqlite" in db_url:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """
    Get or create the global async database engine.

    Args:
        db_url: Override for the configured database URL (first call only)

    Returns:
        AsyncEngine: The SQLAlchemy async engine.
    """
    global _engine
    if _engine is None:
        _engine = create_engine_for_url(db_url or _get_database_url())
    return _engine


def get_session_factory(db_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """
    Get or create the global async session factory.

    Returns:
        async_sessionmaker: The session factory.
    """
    global AsyncSessionLocal
    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(db_url),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return AsyncSessionLocal


async def init_db(db_url: Optional[str] = None) -> None:
    """
    Initialize the database by creating all tables.

    Should be called during application startup.
    """
    engine = get_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized")


async def close_db() -> None:
    """
    Close the database engine and clean up connections.

    Should be called during application shutdown.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        AsyncSessionLocal = None
        logger.info("database_connections_closed")
