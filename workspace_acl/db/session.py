"""
Database Session Management
Engine, session factory and session handling
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from workspace_acl.core.config import settings
from workspace_acl.core.logging import get_logger
from workspace_acl.db.base import Base

logger = get_logger(__name__)

# Engine
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_for_url(url: str) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases"""
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=settings.DEBUG,
            connect_args={"timeout": 30},
        )
    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(bind: AsyncEngine) -> None:
    # Import models so they are registered with Base
    from workspace_acl.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Initialize database engine and create tables"""
    global engine, async_session_maker

    url = url or settings.SQLALCHEMY_URL
    logger.info(f"Connecting to database ({url.split('://', 1)[0]})")

    engine = create_engine_for_url(url)
    async_session_maker = create_session_factory(engine)

    # Create tables (use migrations for production)
    if settings.ENVIRONMENT in ("development", "test"):
        await create_tables(engine)
        logger.info("Database tables created")

    return async_session_maker


async def close_db() -> None:
    """Close database connections"""
    global engine, async_session_maker

    if engine:
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connection closed")


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    if async_session_maker is None:
        raise RuntimeError("Database not initialized, call init_db() first")
    return async_session_maker
