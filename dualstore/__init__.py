"""
dualstore - one unit of work across a relational store and a graph store.

Provides:
- transaction: relational + graph transaction coordination
- graph: Neo4j sessions, Cypher execution and response normalization
- relations: relation loading split across both stores
- config / logging_config: settings and logging
"""

from dualstore.config import DatabaseSettings, GraphSettings, Settings, load_settings
from dualstore.database import Base, create_session_factory, session_scope
from dualstore.exceptions import (
    ConfigurationError,
    CoordinationError,
    DriverError,
    DualStoreError,
    EmptyResponse,
    ProcedureError,
)
from dualstore.graph import CypherExecutor, GraphResponseNormalizer, GraphSessionManager, QueryResult
from dualstore.logging_config import get_logger, setup_logging
from dualstore.metadata import Metadata
from dualstore.relations import (
    CollectionFetchPipeline,
    FetchOptions,
    GraphRelations,
    ModelFetchPipeline,
    SQLAlchemyLoader,
)
from dualstore.transaction import (
    TransactionCoordinator,
    TransactionState,
    run_in_transaction,
    transaction,
)

__version__ = "0.1.0"

__all__ = [
    "DatabaseSettings",
    "GraphSettings",
    "Settings",
    "load_settings",
    "Base",
    "create_session_factory",
    "session_scope",
    "ConfigurationError",
    "CoordinationError",
    "DriverError",
    "DualStoreError",
    "EmptyResponse",
    "ProcedureError",
    "CypherExecutor",
    "GraphResponseNormalizer",
    "GraphSessionManager",
    "QueryResult",
    "get_logger",
    "setup_logging",
    "Metadata",
    "CollectionFetchPipeline",
    "FetchOptions",
    "GraphRelations",
    "ModelFetchPipeline",
    "SQLAlchemyLoader",
    "TransactionCoordinator",
    "TransactionState",
    "run_in_transaction",
    "transaction",
]
