# modengine/storage/kvstore.py
from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import json5

from modengine.config.providers import writeJson5Atomic

logger = logging.getLogger(__name__)

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "FileKeyValueStore"]



@runtime_checkable
class KeyValueStore(Protocol):
    """
    Opaque persistent key-value store. Each call is atomic on its own;
    there are no multi-call transactions.
    """
    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]: ...
    async def set(self, items: Mapping[str, Any]) -> None: ...
    async def remove(self, key: str) -> None: ...



def _normalizeKeys(keys: str | Iterable[str]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)



class MemoryKeyValueStore:
    """In-process store. Values are deep-copied in and out so callers never share state with it."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.writeCount = 0

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._data[key]) for key in _normalizeKeys(keys) if key in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        self._data.update(copy.deepcopy(dict(items)))
        self.writeCount += 1

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)



class FileKeyValueStore:
    """
    All keys live in one JSON5 document. Every write rewrites the document
    through a temp file + os.replace, so a crash leaves either the old or the
    new document on disk. File I/O runs in a worker thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = self._read()
        self._ioLock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            logger.debug("%s: '%s' is missing, starting empty", type(self).__name__, self.path)
            return {}
        try:
            parsed = json5.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as err:
            logger.warning("%s: parse failed for '%s': %s", type(self).__name__, self.path, err)
            return {}
        if not isinstance(parsed, Mapping):
            raise TypeError(f"{type(self).__name__}: '{self.path}' must hold a JSON object, not '{type(parsed).__name__}'")
        return dict(parsed)

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        writeJson5Atomic(self.path, data)

    async def get(self, keys: str | Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._data[key]) for key in _normalizeKeys(keys) if key in self._data}

    async def set(self, items: Mapping[str, Any]) -> None:
        async with self._ioLock:
            nextData = dict(self._data)
            nextData.update(copy.deepcopy(dict(items)))
            await asyncio.to_thread(self._write, nextData)
            self._data = nextData

    async def remove(self, key: str) -> None:
        async with self._ioLock:
            if key not in self._data:
                return
            nextData = dict(self._data)
            nextData.pop(key, None)
            await asyncio.to_thread(self._write, nextData)
            self._data = nextData
