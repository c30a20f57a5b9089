# modengine/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers
from typing import TYPE_CHECKING

from .formatters import DevFormatter, JsonFormatter, RedactingFormatter
from .filters import RecurringSuppressFilter

if TYPE_CHECKING:
    from modengine.config.settings import LoggingSettings

__all__ = [
    "NO_PROPAGATE",
    "configureLogging",
]



# Disable propagation from noisy libraries
NO_PROPAGATE = [
    "uvicorn", "uvicorn.access", "uvicorn.error",
    "fastapi", "asyncio",
    "httpcore.connection", "httpcore.http11", "httpcore.http2",
    "hpack",
]



def configureLogging(settings: LoggingSettings) -> None:
    """
    Initiate the global logging configuration.

    Dev:
      - Console pretty logs (DEBUG)
      - Optional JSON file log (DEBUG)

    Prod:
      - Console JSON logs INFO
      - Optional JSON file log INFO with rotation
      - Token scrubbing always active
      - Optional recurring suppression (toggle)
    """
    rootLevel = logging.DEBUG if settings.devMode else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    consoleFmt = RedactingFormatter(DevFormatter() if settings.devMode else JsonFormatter())
    jsonFmt = RedactingFormatter(JsonFormatter())

    handlers: list[logging.Handler] = []

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(consoleFmt)
    handlers.append(consoleHandler)

    if settings.file:
        fileHandler = logging.handlers.RotatingFileHandler(
            settings.file,
            maxBytes=settings.maxBytes,
            backupCount=settings.backupCount,
            encoding="utf-8"
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(jsonFmt)
        handlers.append(fileHandler)

    if settings.suppressRecurring.enabled:
        levelName = str(settings.suppressRecurring.summaryLevel).upper()
        summaryLevel = getattr(logging, levelName, logging.INFO)

        suppressFilter = RecurringSuppressFilter(
            windowSeconds=settings.suppressRecurring.windowSeconds,
            maxPerWindow=settings.suppressRecurring.maxPerWindow,
            summaryLevel=summaryLevel,
        )
        for handler in handlers:
            handler.addFilter(suppressFilter)

    for handler in handlers:
        root.addHandler(handler)

    # Per-logger tweaks (reduce noise)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
