"""
Graph store access.

Provides:
- GraphSessionManager: scoped session acquisition
- CypherExecutor: query execution, procedures, error normalization
- GraphResponseNormalizer: driver records to plain mappings
"""

from dualstore.graph.executor import CypherExecutor, QueryResult
from dualstore.graph.normalizer import GraphResponseNormalizer, plain_number
from dualstore.graph.session import GraphSessionManager

__all__ = [
    "CypherExecutor",
    "QueryResult",
    "GraphResponseNormalizer",
    "plain_number",
    "GraphSessionManager",
]
