# modengine/mods/installer.py
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from modengine.core.errors import ModEngineError, ModNotFoundError
from modengine.core.jsonutils import serializeError
from modengine.core.time import nowMs
from .fetcher import ManifestFetcher
from .ids import deriveModId
from .models import Manifest, Mod, ModAssets, ModSource
from .registry import ModRegistry

logger = logging.getLogger(__name__)

__all__ = ["ModInstaller", "UpdateAllReport", "ReapplyCallback", "buildAssets", "contentFromManifest", "coerceSource"]

ReapplyCallback = Callable[[Mod], Awaitable[Any] | Any]



def coerceSource(source: ModSource | Mapping[str, Any] | str) -> ModSource:
    """Accepts {owner, repo, branch}, {repository: "owner/repo", branch} or "owner/repo"."""
    if isinstance(source, ModSource):
        return source
    return ModSource.model_validate(source)



def buildAssets(manifest: Manifest, files: Mapping[str, str]) -> ModAssets:
    return ModAssets(
        css=manifest.css,
        js=manifest.js,
        files=dict(files),
        contentScript=manifest.contentScript,
        stylesheet=manifest.stylesheet,
    )



def contentFromManifest(manifest: Manifest, files: Mapping[str, str]) -> dict[str, Any]:
    """The fields an install or update takes from the remote side."""
    # Fields the manifest omits fall back to the record defaults, never to the previous version
    return {
        "name": manifest.name,
        "description": manifest.description or "",
        "category": manifest.category or "uncategorized",
        "version": manifest.version,
        "targetSites": manifest.effectiveTargets(),
        "assets": buildAssets(manifest, files),
        "settings": list(manifest.settings),
    }



@dataclass
class UpdateAllReport:
    updated: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0

    @property
    def message(self) -> str:
        if self.total == 0:
            return "No updates available"
        return f"Updated {len(self.updated)} of {self.total} mods"

    def asDict(self) -> dict[str, Any]:
        return {
            "updated": list(self.updated),
            "failed": [dict(entry) for entry in self.failed],
            "total": self.total,
            "message": self.message,
        }



class ModInstaller:
    """
    Install and update flows. Everything that touches the network runs before
    the registry transaction is opened; a failed fetch leaves the registry as it was.
    """

    def __init__(
        self,
        registry: ModRegistry,
        fetcher: ManifestFetcher,
        *,
        onReapply: ReapplyCallback | None = None,
        clock: Callable[[], int] = nowMs,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self._onReapply = onReapply
        self._clock = clock

    async def _download(self, source: ModSource, modId: str) -> tuple[Manifest, dict[str, str]]:
        try:
            manifest = await self._fetcher.fetch(source)
            files = await self._fetcher.fetchAssets(source, manifest)
        except ModEngineError as err:
            if err.modId is None:
                err.modId = modId
            raise
        return manifest, files

    async def install(self, source: ModSource | Mapping[str, Any] | str) -> Mod:
        src = coerceSource(source)
        modId = deriveModId(src)
        logger.info("Installing mod '%s' from %s", modId, src)

        manifest, files = await self._download(src, modId)
        content = contentFromManifest(manifest, files)
        now = self._clock()

        async with self._registry.transaction() as txn:
            existing = txn.get(modId)
            record = Mod(
                id=modId,
                enabled=existing.enabled if existing is not None else False,
                isDefault=existing.isDefault if existing is not None else False,
                source=src,
                installedAt=(existing.installedAt if existing is not None else None) or now,
                lastUpdated=now,
                updateAvailable=None,
                **content,
            )
            stored = txn.upsert(record)

        if existing is not None:
            logger.info("Reinstalled mod '%s' v%s (enabled=%s)", modId, stored.version, stored.enabled)
        else:
            logger.info("Installed mod '%s' v%s", modId, stored.version)

        if stored.enabled:
            await self._signalReapply(stored)
        return stored.model_copy(deep=True)

    async def update(self, modId: str) -> Mod:
        current = self._registry.get(modId)
        if current is None:
            raise ModNotFoundError(f"Mod '{modId}' not found", modId=modId)
        if current.source is None:
            raise ModNotFoundError(f"Mod '{modId}' has no source to update from", modId=modId)

        logger.info("Updating mod '%s' from %s", modId, current.source)
        manifest, files = await self._download(current.source, modId)
        content = contentFromManifest(manifest, files)
        now = self._clock()

        async with self._registry.transaction() as txn:
            # Re-read inside the lock; enabled may have been toggled while fetching
            latest = txn.require(modId)
            stored = txn.upsert(latest.model_copy(update={
                **content,
                "lastUpdated": now,
                "updateAvailable": None,
            }))

        logger.info("Updated mod '%s' %s -> %s", modId, current.version, stored.version)
        if stored.enabled:
            await self._signalReapply(stored)
        return stored.model_copy(deep=True)

    async def updateAll(self) -> UpdateAllReport:
        """
        Updates every mod flagged with `updateAvailable`, one at a time.
        A failing mod is logged and reported; the others still update.
        """
        pending = [mod.id for mod in self._registry.list() if mod.updateAvailable]
        report = UpdateAllReport(total=len(pending))
        for modId in pending:
            try:
                await self.update(modId)
            except asyncio.CancelledError:
                raise
            except ModEngineError as err:
                logger.warning("Updating '%s' failed: [%s] %s", modId, err.kind, err.message)
                report.failed.append({"id": modId, **serializeError(err)})
            except Exception as err:
                logger.exception("Updating '%s' failed unexpectedly", modId)
                report.failed.append({"id": modId, **serializeError(err)})
            else:
                report.updated.append(modId)
        logger.info("%s", report.message)
        return report

    async def _signalReapply(self, mod: Mod) -> None:
        if self._onReapply is None:
            return
        try:
            result = self._onReapply(mod)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # The stored record is already committed; a page that missed the
            # new version picks it up on its next navigation.
            logger.exception("Re-applying mod '%s' to open pages failed", mod.id)
