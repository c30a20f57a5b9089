# modengine/app/commands.py
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from modengine.core.errors import InvalidRequestError, ModEngineError
from modengine.core.jsonutils import serializeError
from modengine.core.logging import clearLogContext, setLogContext
from modengine.mods.backup import RegistryBackup
from modengine.mods.defaults import DefaultMergeEngine
from modengine.mods.injector import PageInjector
from modengine.mods.installer import ModInstaller, coerceSource
from modengine.mods.models import ModSource
from modengine.mods.registry import ModRegistry
from modengine.mods.update_checker import UpdateChecker, notification

logger = logging.getLogger(__name__)

__all__ = ["ErrorInfo", "CommandResult", "CommandSurface", "rawSourceFromRequest"]

_SOURCE_KEYS = ("owner", "repo", "branch", "repository")



class ErrorInfo(BaseModel):
    kind: str
    message: str
    modId: str | None = None



class CommandResult(BaseModel):
    success: bool
    data: Any = None
    error: ErrorInfo | None = None

    @classmethod
    def ok(cls, data: Any = None) -> CommandResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, err: BaseException | str) -> CommandResult:
        return cls(success=False, error=ErrorInfo(**serializeError(err)))



def rawSourceFromRequest(request: Mapping[str, Any]) -> Any:
    """
    Finds the mod source in a message-style request: a nested `source` (any
    shape ModSource accepts), a legacy nested `github` object, or the source
    keys at the top level. Returns None when there is none.
    """
    for name in ("source", "github"):
        if request.get(name) is not None:
            return request[name]
    flat = {key: request[key] for key in _SOURCE_KEYS if request.get(key) is not None}
    return flat or None



def _toSource(raw: Any) -> ModSource:
    if raw is None:
        raise InvalidRequestError("Missing mod source")
    try:
        return coerceSource(raw)
    except (ValidationError, ValueError, TypeError) as err:
        raise InvalidRequestError(f"Invalid mod source {raw!r}: {_describe(err)}") from err



def _describe(err: BaseException) -> str:
    if isinstance(err, ValidationError) and err.errors():
        return str(err.errors()[0].get("msg", err))
    text = str(err)
    return text.splitlines()[0] if text else type(err).__name__



def _required(value: Any, name: str) -> Any:
    if value is None or value == "":
        raise InvalidRequestError(f"Missing required field '{name}'")
    return value



class CommandSurface:
    """
    The operations a management UI calls. Every call returns a CommandResult;
    nothing raises across this boundary. Engine errors keep their kind,
    anything else is reported as kind "Internal" and logged with its traceback.
    """

    def __init__(
        self,
        *,
        registry: ModRegistry,
        installer: ModInstaller,
        checker: UpdateChecker,
        defaults: DefaultMergeEngine,
        injector: PageInjector | None = None,
        backup: RegistryBackup | None = None,
    ) -> None:
        self._registry = registry
        self._installer = installer
        self._checker = checker
        self._defaults = defaults
        self._injector = injector
        self._backup = backup

        self._actions: dict[str, Callable[[Mapping[str, Any]], Awaitable[CommandResult]]] = {
            "installMod": lambda req: self.install(rawSourceFromRequest(req)),
            "updateMod": lambda req: self.update(req.get("modId")),
            "deleteMod": lambda req: self.delete(req.get("modId")),
            "toggleMod": lambda req: self.toggle(req.get("modId"), req.get("enabled")),
            "checkUpdates": lambda req: self.checkAllUpdates(),
            "mergeDefaultMods": lambda req: self.mergeDefaults(),
            # Only the overwrite-if-default policy exists, so a reset is a merge
            "resetDefaultMods": lambda req: self.mergeDefaults(),
            "getMods": lambda req: self.listMods(),
            "getMod": lambda req: self.getMod(req.get("modId")),
            "pageReady": self._pageReady,
            "updateAllMods": lambda req: self.updateAll(),
            "exportMods": lambda req: self.exportRegistry(),
            "importMods": lambda req: self.importRegistry(req.get("data", req.get("backup"))),
            "getModSettings": lambda req: self.getModSettings(req.get("modId")),
            "saveModSetting": self._saveModSetting,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._actions)

    def _requireInjector(self) -> PageInjector:
        if self._injector is None:
            raise InvalidRequestError("No page injector is attached")
        return self._injector

    def _requireBackup(self) -> RegistryBackup:
        if self._backup is None:
            raise InvalidRequestError("Backup is not available")
        return self._backup

    # ----- Boundary -----

    async def _run(self, action: str, operation: Callable[[], Awaitable[Any]], *, modId: str | None = None) -> CommandResult:
        setLogContext(action=action, modId=modId)
        try:
            data = await operation()
        except ModEngineError as err:
            logger.warning("%s failed: [%s] %s", action, err.kind, err.message)
            return CommandResult.failure(err)
        except Exception as err:
            logger.exception("%s failed unexpectedly", action)
            return CommandResult.failure(err)
        finally:
            clearLogContext()
        return CommandResult.ok(data)

    # ----- Commands -----

    async def install(self, source: ModSource | Mapping[str, Any] | str | None) -> CommandResult:
        async def op():
            mod = await self._installer.install(_toSource(source))
            return mod.model_dump(mode="json")
        return await self._run("install", op)

    async def update(self, modId: str | None) -> CommandResult:
        async def op():
            mod = await self._installer.update(_required(modId, "modId"))
            return mod.model_dump(mode="json")
        return await self._run("update", op, modId=modId)

    async def delete(self, modId: str | None) -> CommandResult:
        async def op():
            removed = await self._registry.delete(_required(modId, "modId"))
            return {"id": removed.id}
        return await self._run("delete", op, modId=modId)

    async def toggle(self, modId: str | None, enabled: Any) -> CommandResult:
        async def op():
            if not isinstance(enabled, bool):
                raise InvalidRequestError("Field 'enabled' must be true or false")
            mod = await self._registry.setEnabled(_required(modId, "modId"), enabled)
            if mod.enabled and self._injector is not None:
                await self._injector.reapply(mod)
            return mod.model_dump(mode="json")
        return await self._run("toggle", op, modId=modId)

    async def checkAllUpdates(self) -> CommandResult:
        async def op():
            updates = await self._checker.checkAll()
            return {
                "updates": [update.asDict() for update in updates],
                "notification": notification(updates),
            }
        return await self._run("checkAllUpdates", op)

    async def mergeDefaults(self) -> CommandResult:
        async def op():
            report = await self._defaults.merge()
            return report.asDict()
        return await self._run("mergeDefaults", op)

    async def listMods(self) -> CommandResult:
        async def op():
            return [mod.model_dump(mode="json") for mod in self._registry.list()]
        return await self._run("listMods", op)

    async def getMod(self, modId: str | None) -> CommandResult:
        async def op():
            return self._registry.require(_required(modId, "modId")).model_dump(mode="json")
        return await self._run("getMod", op, modId=modId)

    async def updateAll(self) -> CommandResult:
        async def op():
            report = await self._installer.updateAll()
            return report.asDict()
        return await self._run("updateAll", op)

    async def exportRegistry(self) -> CommandResult:
        async def op():
            return await self._requireBackup().export()
        return await self._run("exportRegistry", op)

    async def importRegistry(self, payload: Any) -> CommandResult:
        async def op():
            report = await self._requireBackup().restore(payload)
            return report.asDict()
        return await self._run("importRegistry", op)

    async def getModSettings(self, modId: str | None) -> CommandResult:
        async def op():
            mod = self._registry.require(_required(modId, "modId"))
            return await self._requireInjector().storageFor(mod).get()
        return await self._run("getModSettings", op, modId=modId)

    async def saveModSettings(self, modId: str | None, values: Any) -> CommandResult:
        async def op():
            mod = self._registry.require(_required(modId, "modId"))
            if not isinstance(values, Mapping) or not values:
                raise InvalidRequestError("Settings must be a non-empty object")
            for key, value in values.items():
                declaration = mod.declaredSetting(key)
                if declaration is None:
                    continue
                try:
                    declaration.check(value)
                except ValueError as err:
                    raise InvalidRequestError(str(err), modId=mod.id) from err
            storage = self._requireInjector().storageFor(mod)
            await storage.set(values)
            return await storage.get()
        return await self._run("saveModSettings", op, modId=modId)

    async def navigate(self, pageId: str | None, url: str | None, navigationId: str | None = None) -> CommandResult:
        async def op():
            injected = await self._requireInjector().onNavigation(
                str(_required(pageId, "pageId")),
                str(_required(url, "url")),
                navigationId,
            )
            return {"injected": injected}
        return await self._run("navigate", op)

    # ----- Message-style entry point -----

    async def _pageReady(self, request: Mapping[str, Any]) -> CommandResult:
        pageId = request.get("pageId", request.get("tabId"))
        return await self.navigate(
            str(pageId) if pageId is not None else None,
            request.get("url"),
            request.get("navigationId"),
        )

    async def _saveModSetting(self, request: Mapping[str, Any]) -> CommandResult:
        values = request.get("settings")
        if values is None and request.get("key") is not None:
            values = {request["key"]: request.get("value")}
        return await self.saveModSettings(request.get("modId"), values)

    async def dispatch(self, request: Any) -> CommandResult:
        if not isinstance(request, Mapping):
            return CommandResult.failure(InvalidRequestError("Request must be an object"))
        action = request.get("action")
        handler = self._actions.get(action) if isinstance(action, str) else None
        if handler is None:
            logger.warning("Unknown action %r", action)
            return CommandResult.failure(InvalidRequestError(f"Unknown action {action!r}"))
        return await handler(request)
