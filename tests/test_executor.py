"""
Tests for CypherExecutor.
"""

from unittest.mock import MagicMock

import pytest
from neo4j import Record
from neo4j.exceptions import Neo4jError, ServiceUnavailable

from dualstore.exceptions import CoordinationError, DriverError, EmptyResponse, ProcedureError
from dualstore.graph.executor import CypherExecutor
from tests.conftest import procedure_record


class TestRunAndFetch:
    """Read queries in scoped sessions."""

    @pytest.mark.asyncio
    async def test_run_returns_consumed_result(self, executor, driver):
        driver.records = [Record({"n": 1}), Record({"n": 2})]

        result = await executor.run("MATCH (n) RETURN n", {"limit": 2})

        assert result.count == 2
        assert result.summary == {"records": 2}
        assert driver.sessions[0].queries == [("MATCH (n) RETURN n", {"limit": 2})]
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_fetch_all_require_empty(self, executor):
        with pytest.raises(EmptyResponse) as exc_info:
            await executor.fetch_all("MATCH (n:Missing) RETURN n", require=True)

        assert exc_info.value.details["query"] == "MATCH (n:Missing) RETURN n"

    @pytest.mark.asyncio
    async def test_fetch_all_empty_without_require(self, executor):
        assert await executor.fetch_all("MATCH (n:Missing) RETURN n") == []

    @pytest.mark.asyncio
    async def test_fetch_one(self, executor, driver):
        driver.records = [Record({"n": 1}), Record({"n": 2})]

        record = await executor.fetch_one("MATCH (n) RETURN n")

        assert record["n"] == 1

    @pytest.mark.asyncio
    async def test_fetch_one_missing(self, executor):
        assert await executor.fetch_one("MATCH (n) RETURN n") is None

        with pytest.raises(EmptyResponse):
            await executor.fetch_one("MATCH (n) RETURN n", require=True)

    @pytest.mark.asyncio
    async def test_driver_failure_normalized(self, executor, driver):
        driver.run_error = ServiceUnavailable("connection refused")

        with pytest.raises(DriverError) as exc_info:
            await executor.run("RETURN 1")

        assert exc_info.value.code == "ServiceUnavailable"
        assert exc_info.value.query == "RETURN 1"
        assert isinstance(exc_info.value.__cause__, ServiceUnavailable)
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_generic_failure_passes_through(self, executor, driver):
        driver.run_error = ValueError("bad parameter")

        with pytest.raises(ValueError, match="bad parameter"):
            await executor.run("RETURN 1")


class TestConvertError:
    def test_server_error_fields(self, executor):
        error = MagicMock(spec=Neo4jError)
        error.code = "Neo.ClientError.Statement.SyntaxError"
        error.message = "Invalid input"

        converted = executor.convert_error("RETRUN 1", error)

        assert isinstance(converted, DriverError)
        assert converted.code == "Neo.ClientError.Statement.SyntaxError"
        assert converted.driver_message == "Invalid input"
        assert str(converted) == "Neo.ClientError.Statement.SyntaxError: Invalid input"

    def test_other_errors_unchanged(self, executor):
        error = KeyError("x")
        assert executor.convert_error("RETURN 1", error) is error

    def test_debug_logging(self, sessions, caplog):
        executor = CypherExecutor(sessions, debug=True)

        with caplog.at_level("WARNING", logger="dualstore.graph.executor"):
            executor.convert_error("RETURN 1", ValueError("nope"))

        assert "Cypher query failed" in caplog.text


class TestProcedure:
    """Auto-committed procedure queries."""

    @pytest.mark.asyncio
    async def test_success_commits(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=False, response={"x": 1})]]

        response = await executor.procedure("CREATE (n:Thing) RETURN {error: false, response: {x: 1}}")

        assert response == {"x": 1}
        tx = driver.transactions[0]
        assert tx.committed
        assert not tx.rolled_back
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_error_rolls_back(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=True, message="boom")]]

        with pytest.raises(ProcedureError, match="boom"):
            await executor.procedure("MATCH (n) RETURN {error: true, message: 'boom'}")

        tx = driver.transactions[0]
        assert tx.rolled_back
        assert not tx.committed
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_return_clause_appended(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=False)]]

        response = await executor.procedure("CREATE (n:Thing)")

        query, _ = driver.transactions[0].queries[0]
        assert "RETURN {" in query
        assert "error: false" in query
        assert response is None
        assert driver.transactions[0].committed

    @pytest.mark.asyncio
    async def test_existing_return_clause_kept(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=False, response=1)]]

        await executor.procedure("CREATE (n) return {error: false, response: 1}")

        query, _ = driver.transactions[0].queries[0]
        assert query.count("RETURN {") + query.count("return {") == 1

    @pytest.mark.asyncio
    async def test_missing_payload_is_an_error(self, executor, driver):
        driver.tx_responses = [[]]

        with pytest.raises(ProcedureError, match="Procedure did not return a error message"):
            await executor.procedure("CREATE (n) RETURN {response: null}")

        assert driver.transactions[0].rolled_back

    @pytest.mark.asyncio
    async def test_response_without_error_flag(self, executor, driver):
        driver.tx_responses = [[procedure_record(response={"id": 3})]]

        assert await executor.procedure("CREATE (n) RETURN {response: {id: 3}}") == {"id": 3}

    @pytest.mark.asyncio
    async def test_driver_failure_rolls_back(self, executor, driver):
        driver.tx_error = ServiceUnavailable("gone")

        with pytest.raises(DriverError):
            await executor.procedure("CREATE (n)")

        assert driver.transactions[0].rolled_back
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_commit_failure_normalized(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=False)]]
        driver.commit_error = ServiceUnavailable("lost")

        with pytest.raises(DriverError) as exc_info:
            await executor.procedure("CREATE (n)")

        assert exc_info.value.query == "COMMIT"
        assert driver.sessions[0].close_count == 1

    @pytest.mark.asyncio
    async def test_parameters_forwarded(self, executor, driver):
        driver.tx_responses = [[procedure_record(error=False)]]

        await executor.procedure("CREATE (:Person {name: $name})", {"name": "Ada"})

        _, parameters = driver.transactions[0].queries[0]
        assert parameters == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_transaction_requires_coordinator(self, executor):
        with pytest.raises(CoordinationError):
            await executor.transaction("CREATE (n) RETURN {error: false}")


class TestIfFragment:
    def test_true_branch_only(self):
        fragment = CypherExecutor.if_fragment("n.x = 1", "SET n.y = 2", None)

        assert fragment.count("FOREACH") == 1
        assert "CASE WHEN n.x = 1 THEN [1] ELSE [] END" in fragment
        assert "SET n.y = 2" in fragment
        assert "NOT" not in fragment

    def test_false_branch_only(self):
        fragment = CypherExecutor.if_fragment("n.x = 1", None, "SET n.y = 3")

        assert fragment.count("FOREACH") == 1
        assert "CASE WHEN NOT n.x = 1 THEN [1] ELSE [] END" in fragment

    def test_both_branches(self):
        fragment = CypherExecutor.if_fragment("n.x = 1", "  SET n.y = 2  ", "SET n.y = 3")

        assert fragment.count("FOREACH") == 2
        assert fragment.index("SET n.y = 2") < fragment.index("SET n.y = 3")
        assert fragment == fragment.strip()

    def test_no_branches(self):
        assert CypherExecutor.if_fragment("n.x = 1", None, None) == ""
