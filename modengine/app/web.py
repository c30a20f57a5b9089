# modengine/app/web.py
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from modengine.core.time import nowMs
from .commands import CommandResult, rawSourceFromRequest
from .engine import ModEngine

logger = logging.getLogger(__name__)

__all__ = ["createApp", "STATUS_BY_KIND"]

STATUS_BY_KIND: dict[str, int] = {
    "NotFound": 404,
    "ProtectedMod": 409,
    "InvalidRequest": 400,
    "InvalidManifest": 422,
    "FetchFailed": 502,
    "Timeout": 504,
    "Internal": 500,
}



class ToggleBody(BaseModel):
    enabled: bool



class NavigationBody(BaseModel):
    pageId: str
    url: str
    navigationId: str | None = None



def _respond(result: CommandResult) -> JSONResponse:
    status = 200
    if not result.success and result.error is not None:
        status = STATUS_BY_KIND.get(result.error.kind, 500)
    return JSONResponse(result.model_dump(mode="json"), status_code=status)



def _engine(request: Request) -> ModEngine:
    return request.app.state.engine



router = APIRouter()



@router.get("/health")
async def health(request: Request):
    engine = _engine(request)
    return {"ok": True, "started": engine.started, "mods": len(engine.registry), "ts": nowMs()}



@router.get("/mods")
async def listMods(request: Request):
    return _respond(await _engine(request).commands.listMods())



@router.get("/mods/{modId}/settings")
async def getModSettings(modId: str, request: Request):
    return _respond(await _engine(request).commands.getModSettings(modId))



@router.put("/mods/{modId}/settings")
async def saveModSettings(modId: str, request: Request, body: dict[str, Any] = Body(...)):
    return _respond(await _engine(request).commands.saveModSettings(modId, body))



@router.get("/mods/{modId}")
async def getMod(modId: str, request: Request):
    return _respond(await _engine(request).commands.getMod(modId))



@router.post("/mods/install")
async def installMod(request: Request, body: dict[str, Any] = Body(...)):
    return _respond(await _engine(request).commands.install(rawSourceFromRequest(body)))



@router.post("/mods/{modId}/update")
async def updateMod(modId: str, request: Request):
    return _respond(await _engine(request).commands.update(modId))



@router.post("/mods/{modId}/toggle")
async def toggleMod(modId: str, body: ToggleBody, request: Request):
    return _respond(await _engine(request).commands.toggle(modId, body.enabled))



@router.delete("/mods/{modId}")
async def deleteMod(modId: str, request: Request):
    return _respond(await _engine(request).commands.delete(modId))



@router.post("/updates/check")
async def checkUpdates(request: Request):
    return _respond(await _engine(request).commands.checkAllUpdates())



@router.post("/updates/apply")
async def applyUpdates(request: Request):
    return _respond(await _engine(request).commands.updateAll())



@router.get("/backup")
async def exportBackup(request: Request):
    return _respond(await _engine(request).commands.exportRegistry())



@router.post("/backup")
async def importBackup(request: Request, body: dict[str, Any] = Body(...)):
    return _respond(await _engine(request).commands.importRegistry(body))



@router.post("/defaults/merge")
async def mergeDefaults(request: Request):
    return _respond(await _engine(request).commands.mergeDefaults())



@router.post("/navigation")
async def navigation(body: NavigationBody, request: Request):
    return _respond(await _engine(request).commands.navigate(body.pageId, body.url, body.navigationId))



@router.post("/dispatch")
async def dispatch(request: Request, body: dict[str, Any] = Body(...)):
    return _respond(await _engine(request).commands.dispatch(body))



def createApp(engine: ModEngine) -> FastAPI:
    """JSON management surface over the command layer; the lifespan starts and stops the engine."""

    @asynccontextmanager
    async def life(app: FastAPI) -> AsyncIterator[None]:
        # --------------- Startup ---------------
        await engine.start()
        logger.info("Mod engine started")
        yield
        # --------------- Shutdown ---------------
        await engine.stop()

    app = FastAPI(lifespan=life)
    app.state.engine = engine
    app.include_router(router)
    return app
