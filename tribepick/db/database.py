"""
Engine and session wiring for session and activity storage.

The engine is built on first use, so importing the API does not open a
connection pool; tests override `get_session` and never touch it.
"""

import logging
from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tribepick.config import settings
from tribepick.models.db import Base

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one unit of work.

    Commits when the request handler returns; a database error rolls the
    whole request back, so a turn is never half persisted.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError:
            logger.exception("db_session_rollback")
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the sessions and activity tables if they are missing."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
