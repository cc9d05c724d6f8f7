"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from jobengine.config import get_settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Create a test database engine with NullPool.

    Args:
        database_url: The database URL for testing.

    Returns:
        AsyncEngine: The test SQLAlchemy async engine instance.
    """
    return create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize the database session factory.
    Should be called on application startup.

    Args:
        engine: Optional engine to bind instead of the configured one.
    """
    global _engine, AsyncSessionLocal
    if engine is not None:
        _engine = engine
    AsyncSessionLocal = async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info("Database session factory initialized")


async def ping_db() -> None:
    """
    Run a trivial query.

    Raises:
        Exception: Whatever the driver raises while the database is unreachable.
    """
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def close_db(force: bool = False) -> None:
    """
    Close the database connection.
    Should be called on application shutdown.

    Args:
        force: Drop pooled connections without closing them gracefully.
    """
    global _engine, AsyncSessionLocal
    if _engine is not None:
        engine = _engine
        _engine = None
        AsyncSessionLocal = None
        await engine.dispose(close=not force)
        logger.info("Database connection closed", extra={"forced": force})


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Context manager for getting async database sessions.

    Yields:
        AsyncSession: An async database session.
    """
    if AsyncSessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
