# modengine/mods/backup.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from modengine.core.errors import InvalidRequestError
from modengine.core.time import nowMs
from modengine.storage.kvstore import KeyValueStore
from .ids import settingsKey
from .models import Mod
from .registry import ModRegistry

logger = logging.getLogger(__name__)

__all__ = ["BACKUP_FORMAT_VERSION", "RegistryBackup", "RestoreReport"]

BACKUP_FORMAT_VERSION = "1.0.0"



@dataclass
class RestoreReport:
    imported: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    keptDefaults: list[str] = field(default_factory=list)

    def asDict(self) -> dict[str, Any]:
        return {
            "imported": list(self.imported),
            "removed": list(self.removed),
            "keptDefaults": list(self.keptDefaults),
        }



def _parseBackup(payload: Any) -> tuple[list[Mod], dict[str, dict[str, Any]]]:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("mods"), list):
        raise InvalidRequestError("Invalid backup file format: 'mods' must be an array")

    mods: list[Mod] = []
    seen: set[str] = set()
    for idx, record in enumerate(payload["mods"]):
        try:
            mod = Mod.model_validate(record)
        except ValidationError as err:
            issue = err.errors()[0]
            where = ".".join(str(loc) for loc in issue["loc"]) or "<root>"
            raise InvalidRequestError(f"Invalid backup: mods[{idx}] {where}: {issue['msg']}") from err
        if mod.id in seen:
            raise InvalidRequestError(f"Invalid backup: mod id '{mod.id}' appears twice", modId=mod.id)
        seen.add(mod.id)
        mods.append(mod)

    settings = payload.get("settings") or {}
    if not isinstance(settings, Mapping):
        raise InvalidRequestError("Invalid backup file format: 'settings' must be an object")
    perMod = {str(modId): dict(values) for modId, values in settings.items() if isinstance(values, Mapping)}
    return mods, perMod



class RegistryBackup:
    """
    Whole-registry export and restore.

    A backup is `{version, timestamp, mods, settings}` where `settings` maps
    mod ids to their stored `mod_<id>_settings` values. Restore replaces the
    registry in one transaction; default mods survive it.
    """

    def __init__(self, registry: ModRegistry, store: KeyValueStore, *, clock: Callable[[], int] = nowMs) -> None:
        self._registry = registry
        self._store = store
        self._clock = clock

    async def export(self) -> dict[str, Any]:
        mods = self._registry.list()
        keys = [settingsKey(mod.id) for mod in mods]
        stored = await self._store.get(keys) if keys else {}
        settings = {
            mod.id: stored[settingsKey(mod.id)]
            for mod in mods
            if isinstance(stored.get(settingsKey(mod.id)), Mapping)
        }
        logger.info("Exported %d mod(s)", len(mods))
        return {
            "version": BACKUP_FORMAT_VERSION,
            "timestamp": self._clock(),
            "mods": [mod.model_dump(mode="json") for mod in mods],
            "settings": settings,
        }

    async def restore(self, payload: Any) -> RestoreReport:
        mods, settings = _parseBackup(payload)
        version = payload.get("version")
        if version != BACKUP_FORMAT_VERSION:
            logger.warning("Restoring backup with format version %r (expected %s)", version, BACKUP_FORMAT_VERSION)

        async with self._registry.transaction() as txn:
            removed, keptDefaults = txn.replaceAll(mods)

        report = RestoreReport(imported=[mod.id for mod in mods], removed=removed, keptDefaults=keptDefaults)
        toWrite = {
            settingsKey(modId): values
            for modId, values in settings.items()
            if modId in report.imported
        }
        if toWrite:
            await self._store.set(toWrite)

        logger.info(
            "Restored %d mod(s), removed %d, kept %d default(s)",
            len(report.imported), len(report.removed), len(report.keptDefaults),
        )
        return report
