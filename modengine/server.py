# modengine/server.py
from __future__ import annotations

import argparse
import logging
import os

import uvicorn
from fastapi import FastAPI

from modengine.app.engine import ModEngine
from modengine.app.web import createApp
from modengine.config.settings import loadSettings
from modengine.core.logging import configureLogging

logger = logging.getLogger(__name__)

SETTINGS_ENV = "MODENGINE_SETTINGS"



def createServerApp(settingsPath: str | None = None) -> FastAPI:
    """Factory for `uvicorn modengine.server:createServerApp --factory`."""
    settings = loadSettings(userPath=settingsPath or os.environ.get(SETTINGS_ENV))
    configureLogging(settings.logging)
    engine = ModEngine.build(settings)
    logger.info("Mod engine built (storage=%s)", settings.storage.path or "memory")
    return createApp(engine)



def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="modengine", description="Mod registry and sync engine")
    parser.add_argument("--settings", help="user settings file (JSON5)")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    args = parser.parse_args(argv)

    app = createServerApp(args.settings)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)



if __name__ == "__main__":
    main()
