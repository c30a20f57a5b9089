# modengine/mods/injector.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from modengine.core.logging import setLogContext
from modengine.storage.kvstore import KeyValueStore
from .ids import settingsKey
from .matching import isPrivilegedUrl, matchesUrl
from .models import Mod
from .planner import InjectionPlanner

logger = logging.getLogger(__name__)

__all__ = [
    "ScriptExecutor",
    "RecordingExecutor",
    "ModStorage",
    "ModUtils",
    "ModScope",
    "PageInjector",
]



# ------------------------------------------------
#                 Host capabilities
# ------------------------------------------------

@runtime_checkable
class ScriptExecutor(Protocol):
    """
    The page-facing side. The engine never touches a page directly; it hands
    CSS and script text plus a ModScope to an executor.
    """
    async def insertCss(self, pageId: str, css: str, *, styleId: str) -> None: ...
    async def executeScript(self, pageId: str, js: str, scope: ModScope) -> None: ...
    async def waitForElement(self, pageId: str, selector: str, timeoutMs: int) -> bool: ...



class ModStorage:
    """
    A mod's private settings: one mapping stored under `mod_<id>_settings`.
    Keys with nothing stored read as the mod's declared defaults.
    """

    def __init__(
        self,
        store: KeyValueStore,
        modId: str,
        lock: asyncio.Lock,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self._store = store
        self._key = settingsKey(modId)
        self._lock = lock
        self._defaults = dict(defaults or {})

    @property
    def key(self) -> str:
        return self._key

    async def _load(self) -> dict[str, Any]:
        values = await self._store.get([self._key])
        current = values.get(self._key)
        return dict(current) if isinstance(current, Mapping) else {}

    async def get(self, key: str | None = None, default: Any = None) -> Any:
        current = await self._load()
        if key is None:
            return {**self._defaults, **current}
        if key in current:
            return current[key]
        return self._defaults.get(key, default)

    async def set(self, data: Mapping[str, Any]) -> dict[str, Any]:
        async with self._lock:
            current = await self._load()
            current.update(dict(data))
            await self._store.set({self._key: current})
            return current



class ModUtils:
    """Page helpers bound to one page."""

    def __init__(self, executor: ScriptExecutor, pageId: str, modId: str) -> None:
        self._executor = executor
        self._pageId = pageId
        self._modId = modId
        self._styleCount = 0

    async def waitForElement(self, selector: str, timeoutMs: int = 5000) -> bool:
        return await self._executor.waitForElement(self._pageId, selector, timeoutMs)

    async def addGlobalStyle(self, css: str) -> str:
        self._styleCount += 1
        styleId = f"modengine-mod-{self._modId}-global-{self._styleCount}"
        await self._executor.insertCss(self._pageId, css, styleId=styleId)
        return styleId



@dataclass(frozen=True)
class ModScope:
    """
    Everything a mod script is given, and nothing else: its id, its public
    config, its own storage and the page utils. This is an API boundary, not a
    sandbox; what an executor does with the script text is up to the executor.
    """
    modId: str
    config: dict[str, Any]
    storage: ModStorage
    utils: ModUtils



@dataclass
class RecordingExecutor:
    """Executor used when no page host is attached; keeps what would have been injected."""
    injections: list[dict[str, Any]] = field(default_factory=list)

    async def insertCss(self, pageId: str, css: str, *, styleId: str) -> None:
        self.injections.append({"pageId": pageId, "kind": "css", "styleId": styleId, "size": len(css)})

    async def executeScript(self, pageId: str, js: str, scope: ModScope) -> None:
        self.injections.append({"pageId": pageId, "kind": "js", "modId": scope.modId, "size": len(js)})

    async def waitForElement(self, pageId: str, selector: str, timeoutMs: int) -> bool:
        return False

    def forPage(self, pageId: str) -> list[dict[str, Any]]:
        return [entry for entry in self.injections if entry["pageId"] == pageId]



# ------------------------------------------------
#                   Page injector
# ------------------------------------------------

@dataclass
class _PageState:
    url: str
    loadKey: str
    applied: dict[str, str] = field(default_factory=dict)   # modId -> version applied
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)



class PageInjector:
    """
    Applies planned mods to pages, CSS before JS, at most once per mod per
    page load. A load is keyed by `navigationId` when the host provides one,
    otherwise by URL.

    Content already applied to a page is never taken back: disabling or
    deleting a mod affects the next load only.
    """

    def __init__(self, planner: InjectionPlanner, executor: ScriptExecutor, store: KeyValueStore) -> None:
        self._planner = planner
        self._executor = executor
        self._store = store
        self._pages: dict[str, _PageState] = {}
        self._storageLocks: dict[str, asyncio.Lock] = {}

    @property
    def executor(self) -> ScriptExecutor:
        return self._executor

    def appliedMods(self, pageId: str) -> dict[str, str]:
        state = self._pages.get(pageId)
        return dict(state.applied) if state is not None else {}

    def openPages(self) -> list[str]:
        return list(self._pages)

    def storageFor(self, mod: Mod) -> ModStorage:
        lock = self._storageLocks.setdefault(mod.id, asyncio.Lock())
        return ModStorage(self._store, mod.id, lock, mod.settingDefaults())

    def scopeFor(self, mod: Mod, pageId: str) -> ModScope:
        return ModScope(
            modId=mod.id,
            config=mod.publicConfig(),
            storage=self.storageFor(mod),
            utils=ModUtils(self._executor, pageId, mod.id),
        )

    async def _inject(self, pageId: str, mod: Mod) -> bool:
        setLogContext(modId=mod.id, pageId=pageId)
        css = mod.assets.pageCss()
        js = mod.assets.pageJs()
        if not css and not js:
            logger.debug("Mod '%s' has no page assets, nothing to inject", mod.id)
            return False
        try:
            if css:
                await self._executor.insertCss(pageId, css, styleId=f"modengine-mod-{mod.id}")
            if js:
                await self._executor.executeScript(pageId, js, self.scopeFor(mod, pageId))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Injecting mod '%s' into page '%s' failed", mod.id, pageId)
            return False
        logger.debug("Injected mod '%s' v%s into page '%s'", mod.id, mod.version, pageId)
        return True

    async def onNavigation(self, pageId: str, url: str, navigationId: str | None = None) -> list[str]:
        """Returns the ids injected by this call (already-applied ids are skipped)."""
        loadKey = navigationId or url
        state = self._pages.get(pageId)
        if state is None or state.loadKey != loadKey:
            state = _PageState(url=url, loadKey=loadKey)
            self._pages[pageId] = state

        injected: list[str] = []
        async with state.lock:
            for mod in self._planner.plan(url):
                if mod.id in state.applied:
                    continue
                if await self._inject(pageId, mod):
                    state.applied[mod.id] = mod.version
                    injected.append(mod.id)
        if injected:
            logger.info("Page '%s': injected %s", pageId, ", ".join(injected))
        return injected

    async def reapply(self, mod: Mod) -> list[str]:
        """Push a freshly updated or enabled mod into open pages it targets; returns page ids."""
        if not mod.enabled:
            return []
        pages: list[str] = []
        for pageId, state in list(self._pages.items()):
            if isPrivilegedUrl(state.url, self._planner.privilegedSchemes):
                continue
            if not matchesUrl(mod.targetSites, state.url):
                continue
            async with state.lock:
                if self._pages.get(pageId) is not state:
                    # Navigated or closed while waiting
                    continue
                if state.applied.get(mod.id) == mod.version:
                    continue
                if await self._inject(pageId, mod):
                    state.applied[mod.id] = mod.version
                    pages.append(pageId)
        return pages

    def onPageClosed(self, pageId: str) -> None:
        if self._pages.pop(pageId, None) is not None:
            logger.debug("Forgot page '%s'", pageId)
