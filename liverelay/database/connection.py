"""
Database connection and session management.

One async engine per process. SQLite URLs are served through aiosqlite
with a single shared connection; other URLs use a regular pool.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import QueuePool, StaticPool

from liverelay.config import get_config
from liverelay.database.models.base import Base

logger = logging.getLogger(__name__)

_async_engine: Optional[AsyncEngine] = None
_async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _get_async_url(url: str) -> str:
    """Convert sync database URL to async variant."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///")
    elif url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    return url


def _get_pool_kwargs(url: str) -> dict[str, Any]:
    """Pool settings for the database type."""
    # aiosqlite needs one reused connection, otherwise in-memory DBs vanish
    if "sqlite" in url:
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "poolclass": QueuePool,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with the right pool and SQLite pragmas."""
    async_url = _get_async_url(url)
    engine = create_async_engine(async_url, echo=echo, **_get_pool_kwargs(async_url))

    if "sqlite" in async_url and ":memory:" not in async_url:

        @event.listens_for(engine.sync_engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection and create tables.

    Args:
        url: Database URL; defaults to config.database.url

    Returns:
        The session factory shared by the application
    """
    global _async_engine, _async_session_factory

    config = get_config()
    _async_engine = create_engine_for_url(url or config.database.url, echo=config.database.echo)
    _async_session_factory = create_session_factory(_async_engine)

    async with _async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Database initialized: {_async_engine.url.render_as_string(hide_password=True)}")
    return _async_session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory of the initialized database."""
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return _async_session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session."""
    if _async_session_factory is None:
        await init_db()

    async with _async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session() as session:
        yield session


async def close_db() -> None:
    """Close database connections and cleanup."""
    global _async_engine, _async_session_factory

    if _async_engine is not None:
        await _async_engine.dispose()
        _async_engine = None
        _async_session_factory = None
