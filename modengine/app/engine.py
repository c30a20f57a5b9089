# modengine/app/engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass

from modengine.config.settings import EngineSettings
from modengine.mods.backup import RegistryBackup
from modengine.mods.defaults import DefaultMergeEngine, MergeReport, loadDefaultMods
from modengine.mods.fetcher import ManifestFetcher, Requester
from modengine.mods.injector import PageInjector, RecordingExecutor, ScriptExecutor
from modengine.mods.installer import ModInstaller
from modengine.mods.planner import InjectionPlanner
from modengine.mods.registry import ModRegistry
from modengine.mods.update_checker import UpdateChecker
from modengine.storage.kvstore import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .commands import CommandSurface

logger = logging.getLogger(__name__)

__all__ = ["ModEngine", "createStore"]



def createStore(settings: EngineSettings) -> KeyValueStore:
    if settings.storage.path:
        return FileKeyValueStore(settings.storage.path)
    return MemoryKeyValueStore()



@dataclass
class ModEngine:
    """
    One wired instance of every component. Built once per process and passed
    to whoever needs it; nothing here is a module-level singleton.
    """
    settings: EngineSettings
    store: KeyValueStore
    registry: ModRegistry
    fetcher: ManifestFetcher
    planner: InjectionPlanner
    injector: PageInjector
    installer: ModInstaller
    checker: UpdateChecker
    defaults: DefaultMergeEngine
    backup: RegistryBackup
    commands: CommandSurface
    started: bool = False

    @classmethod
    def build(
        cls,
        settings: EngineSettings,
        store: KeyValueStore | None = None,
        *,
        executor: ScriptExecutor | None = None,
        requester: Requester | None = None,
    ) -> ModEngine:
        store = store if store is not None else createStore(settings)
        registry = ModRegistry(store, storageKey=settings.storage.registryKey)
        fetcher = ManifestFetcher.fromSettings(settings.fetch, requester=requester)
        planner = InjectionPlanner(registry, privilegedSchemes=settings.injection.privilegedSchemes)
        injector = PageInjector(planner, executor if executor is not None else RecordingExecutor(), store)
        installer = ModInstaller(registry, fetcher, onReapply=injector.reapply)
        checker = UpdateChecker(registry, fetcher, intervalMs=settings.updates.checkIntervalMs)

        defaultsPath = settings.defaultModsPath()
        try:
            definitions = loadDefaultMods(defaultsPath)
        except (OSError, ValueError, TypeError) as err:
            logger.error("Cannot read default mods from '%s': %s", defaultsPath, err)
            definitions = []
        defaults = DefaultMergeEngine(registry, definitions)
        backup = RegistryBackup(registry, store)

        commands = CommandSurface(
            registry=registry,
            installer=installer,
            checker=checker,
            defaults=defaults,
            injector=injector,
            backup=backup,
        )
        return cls(
            settings=settings,
            store=store,
            registry=registry,
            fetcher=fetcher,
            planner=planner,
            injector=injector,
            installer=installer,
            checker=checker,
            defaults=defaults,
            backup=backup,
            commands=commands,
        )

    async def start(self) -> MergeReport | None:
        if self.started:
            return None
        mods = await self.registry.load()
        logger.info("Registry loaded: %d mod(s)", len(mods))

        report: MergeReport | None = None
        if self.settings.defaults.mergeOnStart:
            report = await self.defaults.merge()

        self.checker.start(checkNow=self.settings.updates.checkOnStart)
        self.started = True
        return report

    async def stop(self) -> None:
        if not self.started:
            return
        await self.checker.stop()
        self.started = False
        logger.info("Mod engine stopped")
