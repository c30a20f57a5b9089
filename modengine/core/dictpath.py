# modengine/core/dictpath.py
from __future__ import annotations
from typing import Any
from collections.abc import Mapping

__all__ = ["getByPath"]



def _splitPath(path: str) -> list[str]:
    """
    Splits a dotted config path ("fetch.timeoutMs") into segments.
    Raises ValueError for empty paths or empty segments ("a..b", ".a", "a.").
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Path must be a non-empty string")
    parts = path.split(".")
    if any(part == "" for part in parts):
        raise ValueError(f"Path '{path}' contains empty segment(s)")
    return parts



def getByPath(obj: Mapping[str, Any], path: str, default: Any | None = None) -> Any:
    """Returns the value at `path`, or `default` when any hop is missing or the path is invalid."""
    try:
        parts = _splitPath(path)
    except ValueError:
        return default

    current: Any = obj
    for part in parts:
        if isinstance(current, Mapping) and part in current:
            current = current[part]
            continue
        return default
    return current
