"""
Graph Response Normalizer - Driver records to plain mappings.

Converts neo4j driver values into store-agnostic records:
- Record -> dict of its fields
- Node -> properties plus ``graph: {type: node, labels, id}``
- Relationship -> properties plus ``graph: {type: relationship, label, start, end}``
- Wide integer scalars -> int (top level only)
"""

from __future__ import annotations

from numbers import Integral
from typing import Any

from neo4j import Record
from neo4j.graph import Node, Relationship


def plain_number(value: Any) -> Any:
    """Convert a wide integer value to a plain int, leaving anything else alone."""
    if isinstance(value, bool) or type(value) is int:
        return value
    if isinstance(value, Integral):
        return int(value)
    return value


def entity_identity(entity: Node | Relationship) -> int | str:
    """
    Numeric identity of a node or relationship.

    Element ids end in the legacy numeric id on every server version the
    driver supports; an opaque element id is returned unchanged.
    """
    element_id = entity.element_id
    tail = element_id.rsplit(":", 1)[-1]
    return int(tail) if tail.isdigit() else element_id


class GraphResponseNormalizer:
    """
    Stateless normalizer for graph query responses.

    Usage:
        normalizer = GraphResponseNormalizer()
        people = normalizer.normalize([record["p"] for record in records])
    """

    def normalize(self, response: Any) -> Any:
        """Normalize one value or a sequence of them, preserving the shape."""
        is_collection = isinstance(response, (list, tuple)) and not isinstance(response, Record)

        records = [self._normalize_one(item) for item in (response if is_collection else [response])]

        return records if is_collection else records[0]

    def transform_integers(self, record: dict[str, Any]) -> dict[str, Any]:
        """Shallow conversion of wide integer values; nested containers are not visited."""
        return {key: plain_number(value) for key, value in record.items()}

    def _normalize_one(self, record: Any) -> Any:
        if isinstance(record, Record):
            record = dict(record.items())
        elif callable(getattr(record, "to_dict", None)):
            record = record.to_dict()

        if isinstance(record, Node):
            record = {
                **dict(record.items()),
                "graph": {
                    "type": "node",
                    "labels": sorted(record.labels),
                    "id": entity_identity(record),
                },
            }
        elif isinstance(record, Relationship):
            record = {
                **dict(record.items()),
                "graph": {
                    "type": "relationship",
                    "label": record.type,
                    "start": entity_identity(record.start_node) if record.start_node is not None else None,
                    "end": entity_identity(record.end_node) if record.end_node is not None else None,
                },
            }

        if isinstance(record, dict):
            record = self.transform_integers(record)

        return record
