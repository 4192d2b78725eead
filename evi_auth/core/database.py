"""Async SQLAlchemy engine and the per-request session."""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from evi_auth.core.config import settings

logger = logging.getLogger("evi_auth.database")

# Token issuance relies on row-level atomicity in PostgreSQL, not on
# in-process locks, so every worker can share one pool.
engine = create_async_engine(
    str(settings.database_url),
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_timeout=settings.db_pool_timeout,
    pool_recycle=settings.db_pool_recycle,
    pool_pre_ping=True,
    echo=settings.debug and settings.log_level == "DEBUG",
)

# Stores hand out frozen snapshots, so nothing needs reloading after commit
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request; commit on success, roll back otherwise."""
    async with async_session_maker() as db:
        try:
            yield db
            await db.commit()
        except BaseException:
            # Includes CancelledError: an aborted request must not leave a
            # consumed token without its successor
            await db.rollback()
            raise


async def check_db_connection() -> bool:
    """Return True when a trivial query round-trips."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OSError, SQLAlchemyError) as e:
        logger.warning("Database health check failed: %s", e)
        return False
    return True
