# modengine/mods/planner.py
from __future__ import annotations

from collections.abc import Iterable

from .matching import DEFAULT_PRIVILEGED_SCHEMES, isPrivilegedUrl, matchesUrl
from .models import Mod
from .registry import ModRegistry

__all__ = ["InjectionPlanner"]



class InjectionPlanner:
    """Which mods a navigation to `url` should receive, in application order."""

    def __init__(self, registry: ModRegistry, *, privilegedSchemes: Iterable[str] = DEFAULT_PRIVILEGED_SCHEMES) -> None:
        self._registry = registry
        self.privilegedSchemes = tuple(privilegedSchemes)

    def plan(self, url: str) -> list[Mod]:
        if not url or isPrivilegedUrl(url, self.privilegedSchemes):
            return []
        # Registry insertion order is application order
        return [mod for mod in self._registry.list() if mod.enabled and matchesUrl(mod.targetSites, url)]
