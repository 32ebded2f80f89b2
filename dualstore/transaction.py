"""
Transaction Coordination - Binds a graph transaction to a relational one.

Provides:
- TransactionCoordinator: wraps a relational transaction handle, owns at most
  one lazily opened graph transaction, completes exactly once
- transaction / run_in_transaction: begin a coordinated unit of work

Protocol:
1. Relational work runs on the wrapped handle
2. The first coordinated graph query opens the graph transaction and
   registers ``commit``/``rollback`` hooks
3. commit()/rollback() fire the hooks in order, then complete the
   relational transaction; later calls are no-ops
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable, TypeVar

from neo4j import AsyncTransaction

from dualstore.exceptions import CoordinationError
from dualstore.logging_config import get_logger

if TYPE_CHECKING:
    from dualstore.graph.session import GraphSessionManager


logger = get_logger(__name__)

T = TypeVar("T")

Hook = Callable[..., Any]


class TransactionState(str, Enum):
    """Coordinator state."""
    OPEN = "open"
    COMPLETING = "completing"
    CLOSED = "closed"


async def maybe_await(value: Any) -> Any:
    """Await ``value`` when it is awaitable; hooks and handles may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


class TransactionCoordinator:
    """
    Coordinates one relational transaction with one graph transaction.

    The wrapped handle is anything with ``commit()`` and ``rollback()``
    methods, sync or async: an AsyncSession, AsyncConnection or session
    transaction. Attributes not defined here are delegated to it while the
    transaction is open; afterwards they raise CoordinationError.

    Usage:
        async with transaction(session_factory) as trx:
            trx.add(order)
            await executor.procedure("CREATE (:Order {id: 1})", transacting=trx)
    """

    def __init__(self, relational: Any):
        self._relational = relational
        self._graph_transaction: AsyncTransaction | None = None
        self._hooks: dict[str, list[Hook]] = {}
        self._state = TransactionState.OPEN
        self._outcome: str | None = None
        self._lock = asyncio.Lock()

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        if self.completed:
            raise CoordinationError(
                f"Relational transaction already {self._state.value}, refusing {name!r}",
                event=self._state.value,
            )
        return getattr(self._relational, name)

    @property
    def relational(self) -> Any:
        return self._relational

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def completed(self) -> bool:
        return self._state is not TransactionState.OPEN

    @property
    def outcome(self) -> str | None:
        """The completion event that ran: ``commit``, ``rollback`` or None."""
        return self._outcome

    # ===== Graph Transaction =====

    def get_graph_transaction(self) -> AsyncTransaction | None:
        return self._graph_transaction

    def set_graph_transaction(self, tx: AsyncTransaction | None) -> "TransactionCoordinator":
        """Attach a graph transaction. Callers attach at most one per coordinator."""
        self._graph_transaction = tx
        return self

    async def ensure_graph_transaction(self, sessions: GraphSessionManager) -> AsyncTransaction:
        """
        Return the attached graph transaction, opening it on first demand.

        The new transaction gets its own session, which stays open until the
        commit or rollback hook closes it.
        """
        async with self._lock:
            if self._graph_transaction is not None:
                return self._graph_transaction

            if self.completed:
                raise CoordinationError(
                    "Cannot open a graph transaction on a completed relational transaction",
                    event=self._state.value,
                )

            session = sessions.open_session()
            try:
                tx = await session.begin_transaction()
            except BaseException:
                await session.close()
                raise

            self.set_graph_transaction(tx)

            async def commit_graph() -> None:
                try:
                    await tx.commit()
                finally:
                    await session.close()

            async def rollback_graph() -> None:
                try:
                    if not tx.closed():
                        await tx.rollback()
                finally:
                    await session.close()

            self.on("commit", commit_graph)
            self.on("rollback", rollback_graph)

            logger.debug("Graph transaction opened for relational transaction")
            return tx

    # ===== Events =====

    def on(self, event: str, hook: Hook) -> "TransactionCoordinator":
        """Register a hook for one or more space-separated event names."""
        for name in event.split():
            self._hooks.setdefault(name, []).append(hook)
        return self

    def listeners(self, event: str) -> list[Hook]:
        return list(self._hooks.get(event, []))

    async def trigger(self, event: str, *args: Any) -> list[Any]:
        """Invoke and await every hook for the events, in registration order."""
        results = []
        for name in event.split():
            for hook in self.listeners(name):
                results.append(await maybe_await(hook(*args)))
        return results

    # ===== Completion =====

    async def commit(self, *args: Any, **kwargs: Any) -> Any:
        return await self._complete("commit", *args, **kwargs)

    async def rollback(self, *args: Any, **kwargs: Any) -> Any:
        return await self._complete("rollback", *args, **kwargs)

    async def _complete(self, event: str, *args: Any, **kwargs: Any) -> Any:
        if self.completed:
            if self._outcome is not None and self._outcome != event:
                logger.warning_with_context(
                    f"Ignoring {event}, relational transaction already completed by {self._outcome}",
                    context={"event": event, "outcome": self._outcome},
                )
            else:
                logger.debug(f"Ignoring repeated {event}, transaction already {self._state.value}")
            return None

        self._state = TransactionState.COMPLETING
        self._outcome = event
        logger.debug(f"Relational transaction completing: {event}")

        try:
            await self.trigger(event)
        except Exception as e:
            logger.error_with_context(
                f"Transaction {event} hook failed, relational transaction left unresolved",
                context={"event": event, "error": str(e)},
            )
            raise CoordinationError(f"Transaction {event} hook failed: {e}", event=event) from e

        self._graph_transaction = None
        result = await maybe_await(getattr(self._relational, event)(*args, **kwargs))

        self._state = TransactionState.CLOSED
        logger.debug(f"Relational transaction closed: {event}")
        return result


@asynccontextmanager
async def transaction(session_factory: Callable[[], Any]) -> AsyncIterator[TransactionCoordinator]:
    """
    Begin a coordinated transaction.

    Commits when the block exits normally and rolls back when it raises.
    A block that already completed the coordinator itself is left alone.
    """
    async with session_factory() as session:
        coordinator = TransactionCoordinator(session)
        try:
            yield coordinator
        except BaseException:
            await coordinator.rollback()
            raise
        await coordinator.commit()


async def run_in_transaction(
    session_factory: Callable[[], Any],
    callback: Callable[[TransactionCoordinator], Awaitable[T]],
) -> T:
    """Run ``callback`` inside a coordinated transaction and return its result."""
    async with transaction(session_factory) as coordinator:
        return await callback(coordinator)
