# modengine/core/logging/formatters.py
from __future__ import annotations

import logging
from typing import Any

from modengine.core.errors import ModEngineError
from modengine.core.jsonutils import safeJsonDumps
from modengine.core.redaction import redactText
from .context import getLogContext

__all__ = ["RedactingFormatter", "JsonFormatter", "DevFormatter"]

CORRELATION_KEYS = ("action", "modId", "pageId")



class RedactingFormatter(logging.Formatter):
    """
    Wraps another formatter and redacts the final formatted string.
    """
    def __init__(self, inner: logging.Formatter):
        super().__init__()
        self._inner = inner

    def format(self, record: logging.LogRecord) -> str:
        rendered = self._inner.format(record)
        try:
            return redactText(rendered)
        except Exception:
            # Never crash logging due to redaction failure
            return rendered



class JsonFormatter(logging.Formatter):
    """
    One-line JSON records for log files.

    The engine's correlation fields (`action`, `modId`, `pageId`) are lifted
    to the top level, from `extra=` first and the log context second, so a
    file can be grepped per mod or per page. Engine errors add their `kind`.
    """
    def format(self, record: logging.LogRecord) -> str:
        ctx = dict(getLogContext() or {})
        base: dict[str, Any] = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "component": record.name.removeprefix("modengine."),
            "msg": record.getMessage(),
        }
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if value is None:
                value = ctx.get(key)
            ctx.pop(key, None)
            if value is not None:
                base[key] = value
        if ctx:
            base["ctx"] = ctx

        if record.exc_info:
            excType = record.exc_info[0]
            excValue = record.exc_info[1]
            try:
                typ = getattr(excType, "__name__", type(excType).__name__)
                msg = str(excValue)
                stack = self.formatException(record.exc_info)
            except Exception:
                typ, msg, stack = "Error", "format failed", None
            base["exc"] = {"type": typ, "message": msg, "stack": stack}
            if isinstance(excValue, ModEngineError):
                base["exc"]["kind"] = excValue.kind
                if excValue.modId is not None:
                    base.setdefault("modId", excValue.modId)

        return safeJsonDumps(base)



class DevFormatter(logging.Formatter):
    """Human-friendly console formatter (dev mode)."""
    def format(self, record: logging.LogRecord) -> str:
        ctx = getLogContext()
        ctxStr = ""
        if ctx:
            md = []
            for key in CORRELATION_KEYS:
                value = ctx.get(key)
                if value:
                    md.append(str(value))
            if md:
                ctxStr = " [" + "/".join(md) + "]"
        msg = record.getMessage()
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        if record.stack_info:
            msg += "\n" + str(record.stack_info)
        return f"{record.levelname}: [{record.name}] {msg}{ctxStr}"
