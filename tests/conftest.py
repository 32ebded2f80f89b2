"""
Shared fixtures: in-memory stand-ins for the neo4j async driver and a
relational transaction handle.
"""

import pytest
from neo4j import Record

from dualstore.graph import CypherExecutor, GraphSessionManager


class FakeResult:
    """Async-iterable result over a fixed list of records."""

    def __init__(self, records=None):
        self.records = list(records or [])
        self.consumed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self.records:
            yield record

    async def consume(self):
        self.consumed = True
        return {"records": len(self.records)}


class FakeTransaction:
    def __init__(self, driver):
        self.driver = driver
        self.queries = []
        self.committed = False
        self.rolled_back = False

    async def run(self, query, parameters=None):
        self.queries.append((query, parameters))
        if self.driver.tx_error is not None:
            raise self.driver.tx_error
        records = self.driver.tx_responses.pop(0) if self.driver.tx_responses else []
        return FakeResult(records)

    async def commit(self):
        if self.driver.commit_error is not None:
            raise self.driver.commit_error
        self.committed = True

    async def rollback(self):
        self.rolled_back = True

    def closed(self):
        return self.committed or self.rolled_back


class FakeSession:
    def __init__(self, driver, database=None):
        self.driver = driver
        self.database = database
        self.queries = []
        self.transactions = []
        self.close_count = 0

    async def run(self, query, parameters=None):
        self.queries.append((query, parameters))
        if self.driver.run_error is not None:
            raise self.driver.run_error
        return FakeResult(self.driver.records)

    async def begin_transaction(self):
        tx = FakeTransaction(self.driver)
        self.transactions.append(tx)
        return tx

    async def close(self):
        self.close_count += 1


class FakeDriver:
    """Records every session it hands out; responses are set by the test."""

    def __init__(self):
        self.sessions = []
        self.records = []
        self.run_error = None
        self.tx_responses = []
        self.tx_error = None
        self.commit_error = None
        self.connectivity_error = None
        self.closed = False

    def session(self, database=None):
        session = FakeSession(self, database=database)
        self.sessions.append(session)
        return session

    async def verify_connectivity(self):
        if self.connectivity_error is not None:
            raise self.connectivity_error

    async def close(self):
        self.closed = True

    @property
    def transactions(self):
        return [tx for session in self.sessions for tx in session.transactions]


class FakeRelational:
    """Relational transaction handle counting its completions."""

    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.calls = []

    async def commit(self):
        self.commits += 1
        self.calls.append("commit")
        return "committed"

    async def rollback(self):
        self.rollbacks += 1
        self.calls.append("rollback")
        return "rolled back"


class FakeSessionFactory:
    """Mimics an async_sessionmaker: calling it yields an async context manager."""

    def __init__(self):
        self.sessions = []

    def __call__(self):
        session = FakeRelational()
        session.closed = False
        self.sessions.append(session)
        return self._scope(session)

    def _scope(self, session):
        class _Scope:
            async def __aenter__(self):
                return session

            async def __aexit__(self, exc_type, exc, tb):
                session.closed = True
                return False

        return _Scope()


def procedure_record(**fields):
    return Record({"result": fields})


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def sessions(driver):
    return GraphSessionManager(driver, database="graph")


@pytest.fixture
def executor(sessions):
    return CypherExecutor(sessions)


@pytest.fixture
def relational():
    return FakeRelational()


@pytest.fixture
def session_factory():
    return FakeSessionFactory()
