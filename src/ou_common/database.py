"""Async SQLAlchemy engine and session factory for the game record store.

There is no ORM: repositories issue raw text() SQL on sessions handed
out by async_session_factory. Callers own the transaction boundary
(`async with session.begin():`).
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config.settings import settings

engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    # watcher and scheduler sessions can sit idle between ticks
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for the read endpoints; closed after the request."""
    async with async_session_factory() as session:
        yield session
