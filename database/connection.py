"""
Async database connection management.

Provides:
- engine: AsyncEngine built from settings.DATABASE_URL
- AsyncSessionLocal: session factory (expire_on_commit=False so returned
  ORM objects stay readable after commit)
- get_async_session(): context manager that rolls back on any error
- init_db(): create all tables (local setups and tests; production schema
  is owned by the hosted store)

Usage:
    from database.connection import get_async_session

    async with get_async_session() as session:
        result = await session.execute(select(Booking))
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from database.models import Base
from shared.config import get_settings

logger = logging.getLogger(__name__)


def _build_engine() -> AsyncEngine:
    settings = get_settings()
    url = settings.DATABASE_URL

    # Normalize sync DSNs to the asyncpg driver
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql+psycopg://"):
        url = url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)

    engine_kwargs: dict = {"echo": settings.DATABASE_ECHO}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)

    return create_async_engine(url, **engine_kwargs)


engine: AsyncEngine = _build_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a session; roll back if the block raises.

    Callers commit explicitly. Uncommitted work is discarded on exit.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def drop_db() -> None:
    """Drop all tables (tests only)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
