"""Engine and session lifecycle for the payment link store."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payment_links.db"

# Set by init_db() for the API process
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Read DATABASE_URL, pointing bare PostgreSQL URLs at the asyncpg driver."""
    url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def create_async_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Build an engine for the payment link store.

    SQLite shares one connection so an in-memory store survives across
    sessions; PostgreSQL gets a small pool.
    """
    url = database_url or get_database_url()
    if url.startswith("sqlite"):
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return sa_create_async_engine(url, echo=echo, pool_size=5, max_overflow=10)


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory for ``engine``, or the one init_db() installed.

    Records stay readable after commit; the service keeps using them to build
    responses and history entries.
    """
    if engine is not None:
        return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Install the process-wide engine and create the payment_links table if missing."""
    global _engine, _session_factory

    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = get_async_session_factory(_engine)
    async with _engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    logger.info("Payment link store ready")
    return _engine


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Payment link store closed")


@asynccontextmanager
async def get_db_context(
    engine: Optional[AsyncEngine] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block succeeds, roll back when it raises."""
    async with get_async_session_factory(engine)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one unit of work per request."""
    async with get_db_context() as session:
        yield session
