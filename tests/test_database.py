"""
Tests for the relational session factory.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dualstore.config import DatabaseSettings
from dualstore.database import create_session_factory, session_scope


class TestSessionFactory:
    def test_engine_built_from_settings(self):
        settings = DatabaseSettings(url="postgresql://u:p@db/app", pool_size=3, max_overflow=4)
        engine = MagicMock()

        with patch("dualstore.database.create_async_engine", return_value=engine) as create:
            factory = create_session_factory(settings)

        create.assert_called_once_with(
            "postgresql+asyncpg://u:p@db/app",
            echo=False,
            pool_size=3,
            max_overflow=4,
            pool_pre_ping=True,
        )
        assert isinstance(factory, async_sessionmaker)
        assert factory.kw["bind"] is engine
        assert factory.class_ is AsyncSession

    @pytest.mark.asyncio
    async def test_session_scope_closes(self):
        session = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session

        async with session_scope(factory) as scoped:
            assert scoped is session

        session.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_session_scope_reraises(self):
        session = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session

        with pytest.raises(ValueError):
            async with session_scope(factory):
                raise ValueError("boom")

        session.close.assert_awaited()
