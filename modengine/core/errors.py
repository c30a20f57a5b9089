# modengine/core/errors.py
from __future__ import annotations

__all__ = [
    "ModEngineError",
    "ModNotFoundError",
    "ProtectedModError",
    "InvalidManifestError",
    "FetchFailedError",
    "FetchTimeoutError",
    "InvalidRequestError",
]



class ModEngineError(Exception):
    """
    Base class for every failure the engine reports to callers.

    `kind` is the stable machine-readable name surfaced by the command layer
    (NotFound, ProtectedMod, InvalidManifest, FetchFailed, Timeout, InvalidRequest).
    """
    kind: str = "Internal"

    def __init__(self, message: str, *, modId: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.modId = modId



class ModNotFoundError(ModEngineError):
    """Unknown mod id, or a remote manifest that does not exist."""
    kind = "NotFound"

    def __init__(self, message: str, *, modId: str | None = None, status: int | None = None) -> None:
        super().__init__(message, modId=modId)
        self.status = status



class ProtectedModError(ModEngineError):
    """Raised when trying to delete a mod shipped as a default."""
    kind = "ProtectedMod"



class InvalidManifestError(ModEngineError):
    kind = "InvalidManifest"

    def __init__(self, message: str, *, modId: str | None = None, problems: list[str] | None = None) -> None:
        super().__init__(message, modId=modId)
        self.problems = list(problems or [])



class FetchFailedError(ModEngineError):
    """Transport error, server error after retries, or an undecodable payload."""
    kind = "FetchFailed"

    def __init__(self, message: str, *, modId: str | None = None, status: int | None = None) -> None:
        super().__init__(message, modId=modId)
        self.status = status



class FetchTimeoutError(FetchFailedError):
    kind = "Timeout"



class InvalidRequestError(ModEngineError):
    """Malformed command input: bad source shape, unknown action, missing field."""
    kind = "InvalidRequest"
