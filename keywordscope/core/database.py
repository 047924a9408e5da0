"""Async SQLAlchemy database setup."""

import logging

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keywordscope.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception:
        logger.warning("Rollback also failed (connection likely closed)")


@asynccontextmanager
async def get_session_context(
    maker: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on clean exit and rolls back on error."""
    factory = maker or async_session_maker
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except InterfaceError as e:
            if not session.in_transaction():
                logger.debug("Session connection already closed during cleanup, ignoring")
                return
            logger.warning(
                "Database interface error with active transaction, rolling back",
                extra={"error": repr(e)},
            )
            await _rollback_quietly(session)
            raise
        except Exception as e:
            logger.warning("Database session error, rolling back", extra={"error": repr(e)})
            await _rollback_quietly(session)
            raise


async def init_db() -> None:
    """Create the research tables if they do not exist."""
    logger.info("Initializing database tables")
    from keywordscope.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    logger.info("Closing database connections")
    await engine.dispose()
