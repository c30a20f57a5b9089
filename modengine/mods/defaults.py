# modengine/mods/defaults.py
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import json5
from pydantic import ValidationError

from modengine.core.time import nowMs
from .models import Mod
from .registry import ModRegistry

logger = logging.getLogger(__name__)

__all__ = ["MergeReport", "DefaultMergeEngine", "loadDefaultMods"]

DefaultDefinition = Mapping[str, Any] | Mod



def loadDefaultMods(path: str | Path) -> list[dict[str, Any]]:
    """
    Reads the built-in default set (a JSON5 array).

    Entries may carry a `bundle` mapping of conventional asset names to files
    relative to the document; their text is inlined into `assets.files`.
    A bundled file that cannot be read is logged and left out.
    """
    path = Path(path)
    parsed = json5.loads(path.read_text(encoding="utf-8"))
    if not isinstance(parsed, list):
        raise TypeError(f"Default mods file '{path}' must hold a JSON array, not '{type(parsed).__name__}'")

    out: list[dict[str, Any]] = []
    for entry in parsed:
        if not isinstance(entry, Mapping):
            logger.warning("Skipping non-object default mod entry in '%s': %r", path, entry)
            continue
        definition = dict(entry)
        bundle = definition.pop("bundle", None) or {}
        if bundle:
            assets = dict(definition.get("assets") or {})
            files = dict(assets.get("files") or {})
            for name, relPath in bundle.items():
                filePath = path.parent / str(relPath)
                try:
                    files[str(name)] = filePath.read_text(encoding="utf-8")
                except OSError as err:
                    logger.warning("Default mod %r: cannot read bundled %s (%s): %s", definition.get("id"), name, filePath, err)
            assets["files"] = files
            definition["assets"] = assets
        out.append(definition)
    return out



@dataclass
class MergeReport:
    changed: bool = False
    added: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    collisions: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def asDict(self) -> dict[str, Any]:
        return {
            "changed": self.changed,
            "added": list(self.added),
            "refreshed": list(self.refreshed),
            "collisions": list(self.collisions),
            "skipped": list(self.skipped),
        }



class DefaultMergeEngine:
    """
    Reconciles the built-in default set into the registry.

    - unknown id          → inserted disabled, marked isDefault
    - existing default    → every field replaced except `enabled` (only when content differs)
    - existing user mod   → left alone, collision reported
    - malformed default   → skipped, reported
    Running it again with the same set changes nothing.
    """

    def __init__(
        self,
        registry: ModRegistry,
        defaults: Sequence[DefaultDefinition] | None = None,
        *,
        clock: Callable[[], int] = nowMs,
    ) -> None:
        self._registry = registry
        self._defaults: list[DefaultDefinition] = list(defaults or [])
        self._clock = clock

    @property
    def defaults(self) -> list[DefaultDefinition]:
        return list(self._defaults)

    def _coerce(self, definition: DefaultDefinition) -> Mod:
        data = definition.model_dump() if isinstance(definition, Mod) else dict(definition)
        data["isDefault"] = True
        return Mod.model_validate(data)

    async def merge(self, defaults: Sequence[DefaultDefinition] | None = None) -> MergeReport:
        definitions = self._defaults if defaults is None else list(defaults)
        report = MergeReport()

        candidates: list[Mod] = []
        for definition in definitions:
            try:
                candidates.append(self._coerce(definition))
            except (ValidationError, TypeError, ValueError) as err:
                defId = definition.get("id") if isinstance(definition, Mapping) else None
                logger.warning("Skipping malformed default mod %r: %s", defId, err)
                report.skipped.append(str(defId) if defId else "<unknown>")

        now = self._clock()
        async with self._registry.transaction() as txn:
            for candidate in candidates:
                existing = txn.get(candidate.id)

                if existing is None:
                    txn.upsert(candidate.model_copy(update={
                        "enabled": False,
                        "installedAt": candidate.installedAt or now,
                        "lastUpdated": candidate.lastUpdated or now,
                    }))
                    report.added.append(candidate.id)
                    continue

                if not existing.isDefault:
                    logger.warning(
                        "Default mod '%s' collides with a user-installed mod; keeping the user's mod",
                        candidate.id,
                    )
                    report.collisions.append(candidate.id)
                    continue

                refreshed = candidate.model_copy(update={"enabled": existing.enabled})
                if refreshed.contentFields() == existing.contentFields():
                    continue
                txn.upsert(refreshed.model_copy(update={
                    "installedAt": existing.installedAt or now,
                    "lastUpdated": now,
                }))
                report.refreshed.append(candidate.id)

            report.changed = txn.changed

        if report.changed or report.collisions or report.skipped:
            logger.info(
                "Default merge: added=%s refreshed=%s collisions=%s skipped=%s",
                report.added, report.refreshed, report.collisions, report.skipped,
            )
        return report
