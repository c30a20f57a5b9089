# modengine/mods/registry.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from modengine.core.errors import ModNotFoundError, ProtectedModError
from modengine.storage.kvstore import KeyValueStore
from .ids import settingsKey
from .models import Mod

logger = logging.getLogger(__name__)

__all__ = ["ModRegistry", "RegistryTransaction", "parseSnapshot"]



def parseSnapshot(raw: Any) -> dict[str, Mod]:
    """
    Turns the stored registry value into an ordered id → Mod mapping.

    Accepts the list form (current) and the id-keyed mapping form (older
    stores). Records that fail validation and duplicate ids are dropped
    with a warning; the first occurrence of an id wins.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        records = list(raw.values())
    elif isinstance(raw, list):
        records = raw
    else:
        logger.warning("Stored registry has unexpected type %s, starting empty", type(raw).__name__)
        return {}

    mods: dict[str, Mod] = {}
    for record in records:
        try:
            mod = Mod.model_validate(record)
        except ValidationError as err:
            recordId = record.get("id") if isinstance(record, Mapping) else None
            logger.warning("Dropping invalid stored mod %r: %s", recordId, err.errors()[:3])
            continue
        if mod.id in mods:
            logger.warning("Dropping duplicate stored mod id %r", mod.id)
            continue
        mods[mod.id] = mod
    return mods



class RegistryTransaction:
    """
    Working copy of the registry handed out by ModRegistry.transaction().
    Mutations apply the registry invariants; nothing is persisted until the
    transaction block exits cleanly.
    """

    def __init__(self, mods: dict[str, Mod]) -> None:
        self._mods = mods
        self.changed = False
        self.removedIds: list[str] = []

    def get(self, modId: str) -> Mod | None:
        return self._mods.get(modId)

    def require(self, modId: str) -> Mod:
        mod = self._mods.get(modId)
        if mod is None:
            raise ModNotFoundError(f"Mod '{modId}' not found", modId=modId)
        return mod

    def list(self) -> list[Mod]:
        return list(self._mods.values())

    def upsert(self, mod: Mod) -> Mod:
        """Insert at the end, or replace in place keeping position; isDefault never changes once set."""
        existing = self._mods.get(mod.id)
        if existing is not None:
            if mod.isDefault != existing.isDefault:
                logger.warning(
                    "Ignoring isDefault change for '%s' (%s -> %s)",
                    mod.id, existing.isDefault, mod.isDefault,
                )
                mod = mod.model_copy(update={"isDefault": existing.isDefault})
            if mod == existing:
                return existing
        self._mods[mod.id] = mod
        self.changed = True
        return mod

    def update(self, modId: str, **fields: Any) -> Mod:
        current = self.require(modId)
        return self.upsert(current.model_copy(update=fields))

    def delete(self, modId: str) -> Mod:
        mod = self.require(modId)
        if mod.isDefault:
            raise ProtectedModError(f"Mod '{modId}' is a default mod and cannot be deleted", modId=modId)
        del self._mods[modId]
        self.removedIds.append(modId)
        self.changed = True
        return mod

    def setEnabled(self, modId: str, enabled: bool) -> Mod:
        return self.update(modId, enabled=bool(enabled))

    def replaceAll(self, mods: Iterable[Mod]) -> tuple[list[str], list[str]]:
        """
        Swap the whole ordered set for `mods`. Current defaults missing from
        `mods` are kept (appended), and `isDefault` always comes from the
        current record: an incoming record cannot make itself a default.
        Returns (removed ids, kept default ids).
        """
        replacement: dict[str, Mod] = {}
        for mod in mods:
            if mod.id in replacement:
                raise ValueError(f"Duplicate mod id '{mod.id}'")
            existing = self._mods.get(mod.id)
            isDefault = existing is not None and existing.isDefault
            if mod.isDefault != isDefault:
                mod = mod.model_copy(update={"isDefault": isDefault})
            replacement[mod.id] = mod

        keptDefaults = [
            modId for modId, mod in self._mods.items()
            if mod.isDefault and modId not in replacement
        ]
        for modId in keptDefaults:
            replacement[modId] = self._mods[modId]
        removed = [modId for modId in self._mods if modId not in replacement]

        if list(replacement.items()) != list(self._mods.items()):
            self._mods = replacement
            self.removedIds.extend(removed)
            self.changed = True
        return removed, keptDefaults

    def serialize(self) -> list[dict[str, Any]]:
        return [mod.model_dump(mode="json") for mod in self._mods.values()]

    def snapshot(self) -> dict[str, Mod]:
        return dict(self._mods)



class ModRegistry:
    """
    Mapping from mod id to Mod, persisted as one value under one store key.

    Writers serialize on a single asyncio.Lock and go through transaction():
    read the committed state, mutate a copy, write the full snapshot with one
    store call, then swap it in. Readers never lock; they see either the old
    or the new committed snapshot.
    """

    def __init__(self, store: KeyValueStore, *, storageKey: str = "mods") -> None:
        self._store = store
        self.storageKey = storageKey
        self._mods: dict[str, Mod] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    # ----- Loading -----

    async def load(self) -> list[Mod]:
        async with self._lock:
            await self._loadLocked()
        return self.list()

    async def _loadLocked(self) -> None:
        values = await self._store.get([self.storageKey])
        self._mods = parseSnapshot(values.get(self.storageKey))
        self._loaded = True
        logger.debug("Registry loaded with %d mod(s)", len(self._mods))

    @property
    def loaded(self) -> bool:
        return self._loaded

    # ----- Reads (lock-free, copies) -----

    def get(self, modId: str) -> Mod | None:
        mod = self._mods.get(modId)
        return mod.model_copy(deep=True) if mod is not None else None

    def require(self, modId: str) -> Mod:
        mod = self.get(modId)
        if mod is None:
            raise ModNotFoundError(f"Mod '{modId}' not found", modId=modId)
        return mod

    def list(self) -> list[Mod]:
        return [mod.model_copy(deep=True) for mod in list(self._mods.values())]

    def __len__(self) -> int:
        return len(self._mods)

    def __contains__(self, modId: object) -> bool:
        return modId in self._mods

    # ----- Critical section -----

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RegistryTransaction]:
        async with self._lock:
            if not self._loaded:
                await self._loadLocked()

            txn = RegistryTransaction({modId: mod.model_copy(deep=True) for modId, mod in self._mods.items()})
            yield txn

            if not txn.changed:
                return

            await self._store.set({self.storageKey: txn.serialize()})
            self._mods = txn.snapshot()

            for modId in txn.removedIds:
                try:
                    await self._store.remove(settingsKey(modId))
                except Exception:
                    logger.exception("Mod '%s' deleted but its settings key could not be purged", modId)

    # ----- Mutations -----

    async def upsert(self, mod: Mod) -> Mod:
        async with self.transaction() as txn:
            stored = txn.upsert(mod)
        return stored.model_copy(deep=True)

    async def delete(self, modId: str) -> Mod:
        async with self.transaction() as txn:
            removed = txn.delete(modId)
        logger.info("Deleted mod '%s'", modId)
        return removed

    async def setEnabled(self, modId: str, enabled: bool) -> Mod:
        async with self.transaction() as txn:
            mod = txn.setEnabled(modId, enabled)
        logger.info("Mod '%s' %s", modId, "enabled" if mod.enabled else "disabled")
        return mod.model_copy(deep=True)
