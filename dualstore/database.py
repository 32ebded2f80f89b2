"""
Relational session factory for dualstore.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from dualstore.config import DatabaseSettings
from dualstore.logging_config import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for relational models."""
    pass


def create_session_factory(settings: DatabaseSettings) -> async_sessionmaker[AsyncSession]:
    """Build an async session factory over a pooled engine."""
    engine = create_async_engine(
        settings.url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_pre_ping=settings.pool_pre_ping,
    )
    logger.debug(f"Relational engine created for {engine.url.render_as_string(hide_password=True)}")

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Yield a session that is always closed afterwards."""
    async with factory() as session:
        try:
            yield session
        except Exception as e:
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()
