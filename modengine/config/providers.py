# modengine/config/providers.py
from __future__ import annotations
import copy
import os
from typing import Any, Protocol, cast
from collections.abc import Mapping
from pathlib import Path
import logging

import json5

from modengine.core.dictpath import getByPath

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigProvider", "OverrideProvider", "DefaultsProvider", "FileProvider", "writeJson5Atomic",
]



class ConfigProvider(Protocol):
    def get(self, key: str) -> Any | None: ...
    def to_dict(self) -> dict[str, Any]: ...


# ----------------------------------------------
#          OverrideProvider (in-memory)
# ----------------------------------------------

class OverrideProvider:
    """
    Topmost layer built from the overrides passed to loadSettings();
    never read from or written to disk.
    """
    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


# ----------------------------------------------
#       Read-only shipped defaults
# ----------------------------------------------

class DefaultsProvider:
    """
    Provider for shipped default configuration.

    Can be initialized either from a JSON/JSON5 file (via `path`)
    or from an in-memory mapping (via `data`).

    If strict=True (default), a missing file raises FileNotFoundError.
    If strict=False, a missing file results in an empty mapping.

    Example:
        DefaultsProvider(path=ASSETS_DIR / "settings_default.json5")
        DefaultsProvider(data={"fetch": {"timeoutMs": 5000}})
    """
    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        path: Path | str | None = None,
        strict: bool = True
    ) -> None:
        if data is not None and path is not None:
            raise ValueError(f"{type(self).__name__}: provide either 'data' or 'path', not both")

        if path is not None:
            path = Path(path)
            if not path.exists():
                if strict:
                    raise FileNotFoundError(f"{type(self).__name__}: defaults file '{path}' not found")
                self.data: Mapping[str, Any] = {}
                return

            if not path.is_file():
                raise FileNotFoundError(f"{type(self).__name__}: '{str(path)}' is not a file")

            try:
                parsed = json5.loads(path.read_text("utf-8"))
            except Exception as err:
                raise TypeError(f"{type(self).__name__}: failed to parse '{path}': {err}") from err

            if not isinstance(parsed, Mapping):
                raise TypeError(
                    f"{type(self).__name__}: file content must be a JSON object, not '{type(parsed).__name__}'"
                )
            self.data = cast(Mapping[str, Any], parsed)

        elif data is not None:
            if not isinstance(data, Mapping):
                raise TypeError(f"{type(self).__name__}: 'data' must be a Mapping, not '{type(data).__name__}'")
            self.data = data

        else:
            raise ValueError(f"{type(self).__name__}: either 'data' or 'path' must be provided")

    def get(self, key: str) -> Any | None:
        return getByPath(self.data, key, None)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.data))



# ----------------------------------------------
#        User settings file JSON/JSON5
# ----------------------------------------------

class FileProvider:
    """
    User settings file (.json or .json5) layered above the shipped defaults.

    Behavior:
        • Missing file → empty dict
        • Parse error → logs warning, empty dict
        • Non-object JSON → raises TypeError
    """
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        self._data.clear()

        if not self.path.exists():
            logger.debug("%s: '%s' is missing, starting as empty dict", type(self).__name__, self.path)
            return

        if not self.path.is_file():
            raise IsADirectoryError(f"{type(self).__name__}: '{self.path}' exists but is not a file")

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as err:
            logger.error("%s: failed to read '%s': %s", type(self).__name__, self.path, err)
            return

        try:
            parsed = json5.loads(text)
        except ValueError as err:
            logger.warning("%s: parse failed for '%s': %s", type(self).__name__, self.path, err)
            parsed = {}

        if parsed is None:
            parsed = {}

        if not isinstance(parsed, Mapping):
            raise TypeError(f"{type(self).__name__}: file content must be a JSON object, not '{type(parsed).__name__}'")

        self._data = dict(parsed)

    def get(self, key: str) -> Any | None:
        return getByPath(self._data, key, None)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)



def writeJson5Atomic(path: Path, data: Any) -> None:
    """Serialize `data` as JSON5 next to `path`, then os.replace() it into place."""
    try:
        out = json5.dumps(data, indent=2, quote_keys=True, ensure_ascii=False)
    except Exception as err:
        raise TypeError(f"failed to serialize data to JSON5 for '{path}': {err}") from err

    tmpPath = path.with_suffix(path.suffix + ".tmp")
    with open(tmpPath, "w", encoding="utf-8") as fl:
        fl.write(out)
        if not out.endswith("\n"):
            fl.write("\n")

    os.replace(tmpPath, path)
