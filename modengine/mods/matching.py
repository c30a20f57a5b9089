# modengine/mods/matching.py
from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from functools import lru_cache

from .models import MATCH_ALL

__all__ = ["compileGlob", "patternMatches", "matchesUrl", "isPrivilegedUrl", "DEFAULT_PRIVILEGED_SCHEMES"]

DEFAULT_PRIVILEGED_SCHEMES: tuple[str, ...] = ("chrome://", "chrome-extension://")



@lru_cache(maxsize=1024)
def compileGlob(pattern: str) -> re.Pattern[str]:
    """
    Turns a target-site glob into a regex: every `*` becomes `.*`, everything
    else is literal. The result is used with search(), so it is not anchored
    to the start or end of the URL.
    """
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))



def patternMatches(pattern: str, url: str) -> bool:
    if pattern == MATCH_ALL:
        return True
    if "*" in pattern:
        return compileGlob(pattern).search(url) is not None
    return pattern in url



def matchesUrl(targetSites: Sequence[str] | None, url: str) -> bool:
    """
    A mod targets a URL when its site list is empty/absent, contains "*",
    or has an entry that matches (literal substring, or glob with `*`).
    """
    if not targetSites:
        return True
    if MATCH_ALL in targetSites:
        return True
    return any(patternMatches(pattern, url) for pattern in targetSites if pattern)



def isPrivilegedUrl(url: str, schemes: Iterable[str] = DEFAULT_PRIVILEGED_SCHEMES) -> bool:
    """The engine's own management pages never receive injections."""
    lowered = (url or "").strip().lower()
    return any(lowered.startswith(scheme.lower()) for scheme in schemes)
