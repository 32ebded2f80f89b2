"""
Cypher Executor - Query execution against the graph store.

Provides:
- run / fetch_all / fetch_one: read queries in a scoped session
- procedure: write queries returning ``{error, message, response}``,
  either auto-committed or inside a coordinated transaction
- if_fragment: conditional statement macro for Cypher
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Mapping, NoReturn

from neo4j import Record
from neo4j import exceptions as neo4j_exceptions

from dualstore.exceptions import (
    CoordinationError,
    DriverError,
    EmptyResponse,
    ProcedureError,
)
from dualstore.graph.session import GraphSessionManager
from dualstore.logging_config import get_logger
from dualstore.transaction import TransactionCoordinator


logger = get_logger(__name__)

PROCEDURE_RETURN = """
      RETURN {
        error: false
      }
"""
DEFAULT_PROCEDURE_MESSAGE = "Procedure did not return a error message"


@dataclass
class QueryResult:
    """Raw result of one query, fully consumed."""

    query: str
    records: list[Record] = field(default_factory=list)
    summary: Any = None
    latency_ms: float = 0.0

    @property
    def count(self) -> int:
        return len(self.records)


async def _consume(query: str, result: Any, started: float) -> QueryResult:
    records = [record async for record in result]
    summary = await result.consume()
    return QueryResult(
        query=query,
        records=records,
        summary=summary,
        latency_ms=(time.perf_counter() - started) * 1000,
    )


def _procedure_response(query: str, records: list[Any]) -> Any:
    """Unpack the single ``{error, message, response}`` map a procedure returns."""
    payload = records[0][0] if records else None
    if not isinstance(payload, Mapping):
        payload = {}

    response = payload.get("response")
    error = payload.get("error", not response)
    message = payload.get("message", DEFAULT_PROCEDURE_MESSAGE)

    if error:
        raise ProcedureError(message, query=query)

    return response


class CypherExecutor:
    """
    Runs Cypher against Neo4j with uniform error handling.

    Usage:
        executor = CypherExecutor(sessions, debug=settings.graph.debug)

        people = await executor.fetch_all("MATCH (p:Person) RETURN p", require=True)
        await executor.procedure("CREATE (:Person {name: $name})", parameters={"name": "Ada"})
    """

    def __init__(self, sessions: GraphSessionManager, debug: bool = False):
        self._sessions = sessions
        self._debug = debug

    @property
    def sessions(self) -> GraphSessionManager:
        return self._sessions

    # ===== Read Queries =====

    async def run(self, query: str, parameters: Mapping[str, Any] | None = None) -> QueryResult:
        """Execute ``query`` in a fresh scoped session."""
        started = time.perf_counter()
        async with self._sessions.acquire_session() as session:
            try:
                result = await session.run(query, parameters or {})
                return await _consume(query, result, started)
            except Exception as e:
                self._reraise(query, e)

    async def fetch_all(
        self,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        require: bool = False,
    ) -> list[Record]:
        result = await self.run(query, parameters)

        if require and not result.records:
            raise EmptyResponse(query=query)

        return result.records

    async def fetch_one(
        self,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        require: bool = False,
    ) -> Record | None:
        result = await self.run(query, parameters)
        record = result.records[0] if result.records else None

        if record is None and require:
            raise EmptyResponse(query=query)

        return record

    # ===== Procedures =====

    async def procedure(
        self,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        transacting: TransactionCoordinator | None = None,
    ) -> Any:
        """
        Run a write query that returns ``{error, message, response}``.

        A query without its own ``RETURN {`` clause gets ``RETURN {error: false}``
        appended. With ``transacting`` the query joins that transaction's graph
        transaction; otherwise it runs in an ad-hoc transaction that commits on
        success and rolls back on any failure.

        Returns:
            The procedure's ``response`` value
        """
        if "RETURN {" not in query.upper():
            query += PROCEDURE_RETURN

        if transacting is not None:
            return await self.transaction(query, parameters, transacting=transacting)

        async with self._sessions.acquire_session() as session:
            tx = await session.begin_transaction()
            try:
                result = await tx.run(query, parameters or {})
                records = [record async for record in result]
                response = _procedure_response(query, records)
            except Exception as e:
                if not tx.closed():
                    await tx.rollback()
                self._reraise(query, e)

            try:
                await tx.commit()
            except Exception as e:
                self._reraise("COMMIT", e)

            return response

    async def transaction(
        self,
        query: str,
        parameters: Mapping[str, Any] | None = None,
        transacting: TransactionCoordinator | None = None,
    ) -> Any:
        """
        Run a procedure query inside a coordinated transaction.

        On failure the coordinator is rolled back, which rolls back both the
        graph and the relational transaction, before the error propagates.
        """
        if transacting is None:
            raise CoordinationError(
                "Graph transactions must be given the current relational transaction"
            )

        tx = await transacting.ensure_graph_transaction(self._sessions)

        try:
            result = await tx.run(query, parameters or {})
            records = [record async for record in result]
            return _procedure_response(query, records)
        except Exception as e:
            await transacting.rollback()
            self._reraise(query, e)

    # ===== Errors =====

    def convert_error(self, query: str, error: Exception) -> Exception:
        """Map driver failures to DriverError; anything else is returned as is."""
        if self._debug:
            logger.warning_with_context(
                "Cypher query failed",
                context={"query": query, "error": repr(error)},
            )

        if isinstance(error, neo4j_exceptions.Neo4jError):
            return DriverError(error.code, error.message, query=query)

        if isinstance(error, neo4j_exceptions.DriverError):
            return DriverError(type(error).__name__, str(error), query=query)

        return error

    def _reraise(self, query: str, error: Exception) -> NoReturn:
        converted = self.convert_error(query, error)
        if converted is error:
            raise error
        raise converted from error

    # ===== Query Fragments =====

    @staticmethod
    def if_fragment(condition: str, when_true: str | None, when_false: str | None = None) -> str:
        """
        Build a conditional Cypher block.

        Cypher has no bare IF; each branch is wrapped in a FOREACH over a
        one-element or empty list. The fragments are spliced in as text.
        """
        out = ""

        if when_true:
            out = f"""
    FOREACH (ignored IN CASE WHEN {condition} THEN [1] ELSE [] END |
      {when_true.strip()}
    )
    """

        if when_false:
            out += f"""
    FOREACH (ignored IN CASE WHEN NOT {condition} THEN [1] ELSE [] END |
      {when_false.strip()}
    )
    """

        return out.strip()
