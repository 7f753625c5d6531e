"""
Database connection and session management.

The engine is created on first use so that importing the package never
requires a database driver.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.pool import NullPool

from featurestate.core.config import settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the async engine from DB_* settings."""
    return create_async_engine(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.pool_overflow,
        pool_timeout=settings.database.pool_timeout,
    )


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the engine."""
    return async_sessionmaker(
        get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session that commits on success and rolls back on error.

    Usable directly as a FastAPI dependency.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def task_session() -> AsyncIterator[AsyncSession]:
    """
    Session on an unpooled engine that is disposed on exit.

    For code run under asyncio.run (Celery tasks): asyncpg connections are
    bound to the event loop that opened them.
    """
    engine = create_async_engine(
        settings.database.url,
        echo=settings.database.echo,
        poolclass=NullPool,
    )
    try:
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await engine.dispose()


async def init_db() -> None:
    """Initialize database (create tables)."""
    from .base import Base
    import featurestate.core.features.models  # noqa: F401  (register tables)

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await get_engine().dispose()
