# modengine/mods/update_checker.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from modengine.core.time import nowMonotonicMs
from .fetcher import ManifestFetcher
from .models import Manifest, Mod
from .registry import ModRegistry
from .versions import isNewer

logger = logging.getLogger(__name__)

__all__ = ["UpdateInfo", "UpdateChecker", "notification"]

DEFAULT_CHECK_INTERVAL_MS = 24 * 60 * 60 * 1000



@dataclass(frozen=True)
class UpdateInfo:
    id: str
    name: str
    currentVersion: str
    newVersion: str

    def asDict(self) -> dict[str, Any]:
        return asdict(self)



def notification(updates: list[UpdateInfo]) -> dict[str, str] | None:
    """User-facing summary of a check, or None when nothing is newer."""
    if not updates:
        return None
    count = len(updates)
    return {
        "title": "Mod Updates Available",
        "message": f"{count} mod{'s' if count > 1 else ''} {'have' if count > 1 else 'has'} updates available",
    }



class UpdateChecker:
    """
    Compares every repository-sourced mod against its remote manifest.

    Only one pass runs at a time: a caller arriving while a pass is in flight
    awaits that pass instead of starting a second one. The periodic loop goes
    through checkIfDue(), so the remote side is asked at most once per interval.
    """

    def __init__(
        self,
        registry: ModRegistry,
        fetcher: ManifestFetcher,
        *,
        intervalMs: int = DEFAULT_CHECK_INTERVAL_MS,
        maxConcurrency: int = 4,
        clock: Callable[[], int] = nowMonotonicMs,
    ) -> None:
        self._registry = registry
        self._fetcher = fetcher
        self.intervalMs = intervalMs
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max(1, maxConcurrency))
        self._inflight: asyncio.Task[list[UpdateInfo]] | None = None
        self._loopTask: asyncio.Task[None] | None = None
        self._lastStartedMs: int | None = None
        self.lastResult: list[UpdateInfo] = []

    # ----- One pass -----

    async def checkAll(self) -> list[UpdateInfo]:
        task = self._inflight
        if task is None or task.done():
            task = asyncio.create_task(self._runPass(), name="modengine.updateCheck")
            self._inflight = task
            task.add_done_callback(self._clearInflight)
        else:
            logger.debug("Update check already running, joining it")
        # Cancelling one waiter must not cancel the pass the others are joined to
        return await asyncio.shield(task)

    def _clearInflight(self, task: asyncio.Task[list[UpdateInfo]]) -> None:
        if self._inflight is task:
            self._inflight = None

    @property
    def running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def _fetchOne(self, mod: Mod) -> Manifest | None:
        assert mod.source is not None
        async with self._semaphore:
            try:
                return await self._fetcher.fetch(mod.source)
            except Exception as err:
                logger.warning("Update check for '%s' (%s) failed: %s", mod.id, mod.source, err)
                return None

    async def _runPass(self) -> list[UpdateInfo]:
        self._lastStartedMs = self._clock()
        candidates = [mod for mod in self._registry.list() if mod.source is not None]
        if not candidates:
            self.lastResult = []
            return []

        logger.debug("Checking %d mod(s) for updates", len(candidates))
        manifests = await asyncio.gather(*(self._fetchOne(mod) for mod in candidates))

        updates: list[UpdateInfo] = []
        async with self._registry.transaction() as txn:
            for checked, manifest in zip(candidates, manifests):
                if manifest is None:
                    continue
                stored = txn.get(checked.id)
                if stored is None:
                    # Deleted while the check was fetching
                    continue
                if isNewer(manifest.version, stored.version):
                    if stored.updateAvailable != manifest.version:
                        txn.update(stored.id, updateAvailable=manifest.version)
                    updates.append(UpdateInfo(
                        id=stored.id,
                        name=stored.name,
                        currentVersion=stored.version,
                        newVersion=manifest.version,
                    ))
                elif stored.updateAvailable is not None:
                    txn.update(stored.id, updateAvailable=None)

        if updates:
            logger.info("Updates available: %s", ", ".join(f"{u.id} {u.currentVersion}->{u.newVersion}" for u in updates))
        else:
            logger.debug("No mod updates available")
        self.lastResult = updates
        return updates

    # ----- Scheduling -----

    def isDue(self) -> bool:
        if self._lastStartedMs is None:
            return True
        return self._clock() - self._lastStartedMs >= self.intervalMs

    async def checkIfDue(self) -> list[UpdateInfo] | None:
        """Runs a pass unless one started less than `intervalMs` ago; returns None when skipped."""
        if self.running:
            return await self.checkAll()
        if not self.isDue():
            return None
        return await self.checkAll()

    def start(self, *, pollMs: int | None = None, checkNow: bool = True) -> None:
        if self._loopTask is not None and not self._loopTask.done():
            return
        if not checkNow and self._lastStartedMs is None:
            # First pass waits a full interval
            self._lastStartedMs = self._clock()
        pollSeconds = (pollMs if pollMs is not None else min(self.intervalMs, 60 * 60 * 1000)) / 1000.0
        self._loopTask = asyncio.create_task(self._loop(pollSeconds), name="modengine.updateLoop")
        logger.debug("Update checker started (interval=%dms)", self.intervalMs)

    async def stop(self) -> None:
        task, self._loopTask = self._loopTask, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            inflight.cancel()
            try:
                await inflight
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Update check failed while stopping")
        logger.debug("Update checker stopped")

    async def _loop(self, pollSeconds: float) -> None:
        while True:
            try:
                updates = await self.checkIfDue()
                note = notification(updates or [])
                if note is not None:
                    logger.info("%s: %s", note["title"], note["message"])
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled update check failed")
            await asyncio.sleep(pollSeconds)
