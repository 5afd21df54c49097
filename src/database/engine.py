"""
Database engine configuration for VEO3 Studio backend

Async SQLAlchemy 2.0 setup with connection pooling
"""

from typing import AsyncGenerator

from loguru import logger
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT


# Global engine and session maker
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Create and configure async database engine

    Returns:
        Configured AsyncEngine instance
    """
    global engine

    if engine is None:
        if DATABASE_URL.startswith("sqlite"):
            # Local development without Postgres
            engine = create_async_engine(DATABASE_URL, echo=False)
            logger.info(f"Database engine created (sqlite) - Environment: {ENVIRONMENT}")
            return engine

        is_production = ENVIRONMENT == "production"

        engine = create_async_engine(
            DATABASE_URL,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=10 if is_production else 5,
            max_overflow=20 if is_production else 10,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,
            echo=False,
            echo_pool=False,
            connect_args={
                "statement_cache_size": 0,
                "server_settings": {
                    "application_name": "veo3_backend",
                    "jit": "off",
                },
            },
        )

        logger.info(
            f"Database engine created - Environment: {ENVIRONMENT}, "
            f"Pool size: {engine.pool.size()}, Max overflow: {engine.pool.overflow()}"
        )

    return engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """
    Create async session maker

    Returns:
        Configured async_sessionmaker instance
    """
    global AsyncSessionLocal

    if AsyncSessionLocal is None:
        AsyncSessionLocal = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,  # Important for async!
            autoflush=False,
        )

    return AsyncSessionLocal


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database session

    Usage in handlers:
        async def handler(session: AsyncSession = Depends(get_session)):
            ...
    """
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Session error: {e}")
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Dependency for code that outlives the request session (SSE batch workers)

    Each worker opens its own session from the returned factory.
    """
    return get_session_maker()


async def dispose_engine() -> None:
    """
    Dispose database engine and close all connections

    Call this on application shutdown
    """
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
        engine = None
        AsyncSessionLocal = None

