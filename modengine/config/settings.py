# modengine/config/settings.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .providers import ConfigProvider, DefaultsProvider, FileProvider, OverrideProvider
from .store import ConfigStore

logger = logging.getLogger(__name__)

__all__ = [
    "ASSETS_DIR",
    "DEFAULT_SETTINGS_PATH",
    "DEFAULT_MODS_PATH",
    "FetchSettings",
    "UpdateSettings",
    "StorageSettings",
    "InjectionSettings",
    "DefaultsSettings",
    "LoggingSettings",
    "EngineSettings",
    "buildConfigStore",
    "loadSettings",
]

ASSETS_DIR = Path(__file__).resolve().parent.parent / "assets"
DEFAULT_SETTINGS_PATH = ASSETS_DIR / "settings_default.json5"
DEFAULT_MODS_PATH = ASSETS_DIR / "default_mods.json5"



class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")



class FetchSettings(_Section):
    layout: Literal["raw", "contentsApi"] = "raw"
    rawBaseUrl: str = "https://raw.githubusercontent.com"
    apiBaseUrl: str = "https://api.github.com"
    manifestFileName: str = "mod.json"
    assetFiles: list[str] = Field(
        default_factory=lambda: ["content.js", "content.css", "settings.html", "settings.js"]
    )
    timeoutMs: int = Field(default=10_000, gt=0)     # per HTTP request
    deadlineMs: int = Field(default=30_000, gt=0)    # whole manifest fetch incl. retries
    retries: int = Field(default=1, ge=0)
    token: str | None = None



class UpdateSettings(_Section):
    checkIntervalMs: int = Field(default=24 * 60 * 60 * 1000, gt=0)
    checkOnStart: bool = True



class StorageSettings(_Section):
    registryKey: str = "mods"
    path: str | None = None                          # None → in-memory store



class InjectionSettings(_Section):
    privilegedSchemes: list[str] = Field(default_factory=lambda: ["chrome://", "chrome-extension://"])



class DefaultsSettings(_Section):
    path: str | None = None                          # None → bundled default_mods.json5
    mergeOnStart: bool = True



class SuppressRecurringSettings(_Section):
    enabled: bool = False
    windowSeconds: int = 60
    maxPerWindow: int = 5
    summaryLevel: str = "INFO"



class LoggingSettings(_Section):
    devMode: bool = True
    file: str | None = None
    maxBytes: int = 10 * 1024 * 1024
    backupCount: int = 5
    suppressRecurring: SuppressRecurringSettings = Field(default_factory=SuppressRecurringSettings)



class EngineSettings(_Section):
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    updates: UpdateSettings = Field(default_factory=UpdateSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    injection: InjectionSettings = Field(default_factory=InjectionSettings)
    defaults: DefaultsSettings = Field(default_factory=DefaultsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def defaultModsPath(self) -> Path:
        return Path(self.defaults.path) if self.defaults.path else DEFAULT_MODS_PATH



def buildConfigStore(
    *,
    userPath: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    defaultsPath: str | Path = DEFAULT_SETTINGS_PATH,
) -> ConfigStore:
    """
    Layers: shipped defaults → optional user file → in-memory overrides.
    The merged document is validated against EngineSettings.
    """
    providers: list[ConfigProvider] = [DefaultsProvider(path=defaultsPath, strict=False)]
    if userPath is not None:
        providers.append(FileProvider(userPath))
    providers.append(OverrideProvider(overrides))
    return ConfigStore(namespace="modengine", providers=providers, validator=EngineSettings.model_validate)



def loadSettings(
    *,
    userPath: str | Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    defaultsPath: str | Path = DEFAULT_SETTINGS_PATH,
) -> EngineSettings:
    store = buildConfigStore(userPath=userPath, overrides=overrides, defaultsPath=defaultsPath)
    settings = store.validated()
    logger.debug("Settings loaded from layers %s", store.snapshot()["layers"])
    return settings
