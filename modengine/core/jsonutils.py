# modengine/core/jsonutils.py
from __future__ import annotations

import base64
import json
from collections.abc import Mapping, Iterable
from dataclasses import is_dataclass, asdict
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

__all__ = ["safeJsonDumps", "serializeError", "tryJSONify"]



# ------------------------------------------------
#                JSON serialization
# ------------------------------------------------

def safeJsonDumps(obj: object) -> str:
    """
    Serializes an object or pydantic model to a compact JSON string.
    Uses deterministic separators (",", ":") and disallows NaN/infinity.
    If direct JSON encoding fails, falls back to tryJSONify (circular/depth-safe) and retries.
    """
    payload: Any
    if isinstance(obj, BaseModel):
        payload = obj.model_dump(mode="json")
    else:
        payload = obj

    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except Exception:
        safePayload = tryJSONify(payload, _maxDepth=None)
        return json.dumps(safePayload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))



# ------------------------------------------------
#              Error / Exception helpers
# ------------------------------------------------

def serializeError(err: Any) -> dict[str, Any]:
    """
    Converts an exception into the {kind, message} shape used at the command boundary.

    Examples:
        ModNotFoundError("Mod 'x' not found") -> {"kind": "NotFound", "message": "Mod 'x' not found"}
        ValueError("bad")                     -> {"kind": "Internal", "message": "bad"}
        "error text"                          -> {"kind": "Internal", "message": "error text"}
        None                                  -> {}

    Stack traces are never included; they belong in the log.
    """
    if err is None:
        return {}

    if isinstance(err, str):
        return {"kind": "Internal", "message": err}

    if isinstance(err, BaseException):
        kind = getattr(err, "kind", None)
        if not isinstance(kind, str) or not kind:
            kind = "Internal"
        message = str(getattr(err, "message", "") or err) or err.__class__.__name__
        data: dict[str, Any] = {"kind": kind, "message": message}
        modId = getattr(err, "modId", None)
        if modId:
            data["modId"] = modId
        return data

    return {"kind": "Internal", "message": repr(err)}



# ------------------------------------------------
#              Generic JSON safety
# ------------------------------------------------

def tryJSONify(obj: Any, *, _seen: set[int] | None = None, _depth: int = 0, _maxDepth: int | None = 10) -> Any:
    """
    Attempts to make any object JSON-serializable.

    Rules:
      • Basic scalars (None, bool, int, float, str) are preserved.
      • pydantic models → model_dump(mode="json").
      • Exceptions → serializeError().
      • bytes/bytearray/memoryview → base64 {"__b64__":"..."}.
      • date/datetime → ISO8601 string.
      • Path → string path.
      • sets/tuples/iterables → list.
      • Mappings → dict with str keys.
      • fallback → repr(obj)
    """
    if _seen is None:
        _seen = set()

    oid = id(obj)
    if oid in _seen:
        return f"<circular_ref {type(obj).__name__}>"
    if isinstance(_maxDepth, int) and _depth > _maxDepth:
        return f"<max_depth_exceeded {type(obj).__name__}>"
    _seen.add(oid)

    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if isinstance(obj, BaseException):
        return serializeError(obj)

    if isinstance(obj, (bytes, bytearray, memoryview)):
        return {"__b64__": base64.b64encode(bytes(obj)).decode("ascii")}

    if isinstance(obj, (date, datetime)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return tryJSONify(obj.value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)

    if is_dataclass(obj) and not isinstance(obj, type):
        return tryJSONify(asdict(obj), _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth)

    if isinstance(obj, Path):
        return str(obj)

    if isinstance(obj, (set, frozenset, tuple)):
        return [tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth) for value in obj]

    if isinstance(obj, Mapping):
        return {
            str(key): tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth) for key, value in obj.items()
        }

    if isinstance(obj, Iterable):
        return [tryJSONify(value, _seen=_seen, _depth=_depth + 1, _maxDepth=_maxDepth) for value in obj]

    # Last-ditch representation (avoid raising during logging)
    return repr(obj)
