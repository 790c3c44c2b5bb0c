"""Extract values from nested provider responses by dotted path."""

from __future__ import annotations

import re
from typing import Any, Mapping

_SEGMENT = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


class _Undefined:
    """Marker for a terminal key that does not exist."""

    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED: Any = _Undefined()


def split_path(path: str) -> list[str | int]:
    """Split ``"data.items[0].url"`` into ``["data", "items", 0, "url"]``.

    Dotted numeric segments (``"choices.0"``) stay strings; they are treated
    as list indexes only when the current node is a list.
    """
    segments: list[str | int] = []
    for name, index in _SEGMENT.findall(path):
        segments.append(int(index) if index else name)
    return segments


def _step(node: Any, key: str | int) -> Any:
    if isinstance(node, Mapping):
        if key in node:
            return node[key]
        if isinstance(key, int) and str(key) in node:
            return node[str(key)]
        return UNDEFINED
    if isinstance(node, (list, tuple)):
        if isinstance(key, str):
            if not key.lstrip("-").isdigit():
                return UNDEFINED
            key = int(key)
        if -len(node) <= key < len(node):
            return node[key]
        return UNDEFINED
    return UNDEFINED


def extract_by_path(document: Any, path: str) -> Any:
    """Resolve ``path`` against ``document``.

    Returns ``None`` when an intermediate node is missing or null (the path
    is broken) and :data:`UNDEFINED` when only the final key is unresolved
    (no such field).
    """
    if not path:
        return UNDEFINED
    current = document
    for key in split_path(path):
        if current is None or current is UNDEFINED:
            return None
        current = _step(current, key)
    return current


def map_fields(document: Any, mapping: Mapping[str, str] | None) -> dict[str, Any]:
    """Apply ``{name: path}`` to ``document`` and return a flat dict.

    Names whose terminal key is unresolved are left out of the result.
    """
    result: dict[str, Any] = {}
    for name, path in (mapping or {}).items():
        value = extract_by_path(document, path)
        if value is not UNDEFINED:
            result[name] = value
    return result
