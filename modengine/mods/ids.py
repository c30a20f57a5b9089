# modengine/mods/ids.py
from __future__ import annotations
import re

from modengine.core.errors import InvalidRequestError
from .models import ModSource

__all__ = ["deriveModId", "settingsKey"]

_ID_STRIP_RE = re.compile(r"[^a-z0-9-]")



def deriveModId(source: ModSource) -> str:
    """
    Stable id for a repository-sourced mod: "{owner}-{repo}" lower-cased with
    everything outside [a-z0-9-] stripped. The branch is not part of the id.
    """
    modId = _ID_STRIP_RE.sub("", f"{source.owner}-{source.repo}".lower())
    if modId.strip("-") == "":
        raise InvalidRequestError(f"Cannot derive a mod id from {source.repository!r}")
    return modId



def settingsKey(modId: str) -> str:
    """Store key holding a mod's own settings; purged when the mod is deleted."""
    return f"mod_{modId}_settings"
