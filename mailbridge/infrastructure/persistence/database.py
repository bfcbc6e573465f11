"""Persistence: async engine, session factory, and Base for SQLAlchemy ORM.

Schema is managed by Alembic migrations. Engine and session factory are
created lazily on first use so import does not trigger Settings
validation. Repositories receive the session factory and open one short
transaction per operation.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mailbridge.core.config import get_settings

logger = logging.getLogger(__name__)

# Set by _ensure_engine() on first use; avoids get_settings() at import time.
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Return a session factory whose objects stay usable after commit."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _ensure_engine() -> None:
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return
    settings = get_settings()
    engine_kwargs: dict[str, Any] = {
        "echo": settings.database_echo,
        "pool_pre_ping": True,
    }
    if settings.database_url.startswith("postgresql"):
        engine_kwargs.update(
            pool_size=settings.db_pool_size if settings.db_pool_size is not None else 10,
            max_overflow=(
                settings.db_max_overflow if settings.db_max_overflow is not None else 20
            ),
            pool_recycle=3600,
        )
    engine = create_async_engine(settings.database_url, **engine_kwargs)
    AsyncSessionLocal = build_session_factory(engine)
    logger.info("Database engine created")


def get_engine() -> AsyncEngine:
    """Return the process engine, creating it on first use."""
    _ensure_engine()
    assert engine is not None
    return engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process session factory, creating the engine on first use."""
    _ensure_engine()
    assert AsyncSessionLocal is not None
    return AsyncSessionLocal


async def dispose_engine() -> None:
    """Close pooled connections (called on shutdown)."""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")
    engine = None
    AsyncSessionLocal = None
