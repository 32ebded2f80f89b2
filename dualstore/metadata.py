"""
Per-instance metadata side-channel.

A key-value bag that lives next to an entity's persisted attributes without
ever being written to either store. Paths are dotted strings
(``"fetch.pending"``) or sequences of keys.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

_MISSING = object()

KeyPath = str | Iterable[str]


def _split(path: KeyPath) -> list[str]:
    if isinstance(path, str):
        return [part for part in path.split(".") if part]
    return [str(part) for part in path]


def _deep_merge(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value) if isinstance(value, Mapping) else value
    return target


class Metadata:
    """
    Metadata bag scoped to one entity instance.

    Usage:
        meta = Metadata({"source": "import"})
        meta.set("fetch.pending", ["friends"])
        meta.get("fetch.pending", [])   # ["friends"]
        meta.unset("fetch.pending")
    """

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def __repr__(self) -> str:
        return f"Metadata({self._data!r})"

    def __contains__(self, path: KeyPath) -> bool:
        return self.has(path)

    def _lookup(self, path: KeyPath) -> Any:
        node: Any = self._data
        for key in _split(path):
            if not isinstance(node, dict) or key not in node:
                return _MISSING
            node = node[key]
        return node

    def has(self, path: KeyPath) -> bool:
        return bool(_split(path)) and self._lookup(path) is not _MISSING

    def get(self, path: KeyPath | None = None, default: Any = None) -> Any:
        """Value at ``path``, ``default`` when absent, or the whole bag without a path."""
        if path is None:
            return self._data
        value = self._lookup(path)
        return default if value is _MISSING else value

    def set(self, path: KeyPath | Mapping[str, Any], value: Any = None, unset: bool = False) -> "Metadata":
        """
        Set one path, or deep-merge a mapping of top-level keys.

        With ``unset=True`` the named keys are removed instead.
        """
        if isinstance(path, Mapping):
            attrs = dict(path)
        else:
            keys = _split(path)
            attrs: dict[str, Any] = {}
            node = attrs
            for key in keys[:-1]:
                node = node.setdefault(key, {})
            node[keys[-1]] = value

        if unset:
            for key in attrs:
                self._data.pop(key, None)
        else:
            _deep_merge(self._data, attrs)

        return self

    def unset(self, path: KeyPath) -> "Metadata":
        keys = _split(path)
        if not keys:
            return self
        node: Any = self._data
        for key in keys[:-1]:
            if not isinstance(node, dict) or key not in node:
                return self
            node = node[key]
        if isinstance(node, dict):
            node.pop(keys[-1], None)
        return self

    def clear(self) -> "Metadata":
        self._data = {}
        return self

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)
