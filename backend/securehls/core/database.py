"""Async SQLAlchemy database configuration."""

from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from securehls.core.config import settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Create the engine on first use so importing models needs no driver."""
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )


@lru_cache(maxsize=1)
def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the session factory bound to the application engine."""
    return async_sessionmaker(get_engine(), expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a database session."""
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def create_worker_engine() -> AsyncEngine:
    """Engine without pooling for code that runs each job in a fresh event loop."""
    return create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
