"""
Graph Session Management - Scoped Neo4j sessions.

Provides:
- GraphSessionManager: acquire/release discipline over an AsyncDriver
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncSession

from dualstore.config import GraphSettings
from dualstore.logging_config import get_logger


logger = get_logger(__name__)


class GraphSessionManager:
    """
    Hands out Neo4j sessions scoped to a single logical operation.

    Features:
    - Sessions closed exactly once on every exit path
    - Unscoped sessions for promotion into coordinator-held transactions
    - Connectivity verification and health checks

    Usage:
        sessions = GraphSessionManager.from_settings(settings.graph)
        await sessions.connect()

        async with sessions.acquire_session() as session:
            result = await session.run("MATCH (n) RETURN count(n)")
    """

    def __init__(self, driver: AsyncDriver, database: str | None = None):
        self._driver = driver
        self._database = database
        self._active_sessions = 0
        self._connected = False

    @classmethod
    def from_settings(cls, settings: GraphSettings) -> "GraphSessionManager":
        driver = AsyncGraphDatabase.driver(
            settings.uri,
            auth=(settings.user, settings.password),
        )
        return cls(driver, database=settings.database)

    @property
    def driver(self) -> AsyncDriver:
        return self._driver

    @property
    def database(self) -> str | None:
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def active_sessions(self) -> int:
        """Number of scoped sessions acquired and not yet released."""
        return self._active_sessions

    async def connect(self) -> bool:
        try:
            await self._driver.verify_connectivity()
            self._connected = True
        except Exception as e:
            logger.error(f"Failed to connect to Neo4j: {e}")
            self._connected = False
        return self._connected

    async def close(self) -> None:
        if self._active_sessions:
            logger.warning_with_context(
                "Closing driver with sessions still acquired",
                context={"active_sessions": self._active_sessions},
            )
        await self._driver.close()
        self._connected = False

    async def health_check(self) -> dict[str, Any]:
        try:
            async with self.acquire_session() as session:
                result = await session.run("RETURN 1 AS ok")
                await result.consume()
            return {
                "status": "healthy",
                "backend": "neo4j",
                "connected": True,
                "active_sessions": self._active_sessions,
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "backend": "neo4j",
                "connected": False,
                "error": str(e),
            }

    def open_session(self) -> AsyncSession:
        """Open a session the caller owns and must close itself."""
        return self._driver.session(database=self._database)

    @asynccontextmanager
    async def acquire_session(self) -> AsyncIterator[AsyncSession]:
        """Acquire a session released when the scope exits, normally or not."""
        session = self.open_session()
        self._active_sessions += 1
        logger.debug("Graph session acquired")
        try:
            yield session
        finally:
            self._active_sessions -= 1
            await session.close()
            logger.debug("Graph session released")
