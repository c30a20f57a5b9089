# modengine/mods/versions.py
from __future__ import annotations

__all__ = ["parseVersionSegments", "versionKey", "compareVersions", "isNewer"]



def parseVersionSegments(version: str | None) -> list[int]:
    """
    Splits a dotted version into integer segments.

    Non-numeric (including non-ASCII digits such as "²"), negative or empty
    segments count as 0, so "1.x.3" -> [1, 0, 3] and "" -> [0]. Surrounding whitespace and a leading "v" are ignored.
    """
    text = str(version or "").strip()
    if text[:1] in ("v", "V") and text[1:2].isdigit():
        text = text[1:]
    segments: list[int] = []
    for part in text.split("."):
        part = part.strip()
        segments.append(int(part) if part.isascii() and part.isdigit() else 0)
    return segments



def versionKey(version: str | None) -> tuple[int, ...]:
    """Sort key consistent with compareVersions: trailing zero segments are dropped."""
    segments = parseVersionSegments(version)
    while segments and segments[-1] == 0:
        segments.pop()
    return tuple(segments)



def compareVersions(first: str | None, second: str | None) -> int:
    """
    Returns -1, 0 or 1. Segment-wise numeric comparison up to the longer length,
    missing segments treated as 0: compareVersions("1.2.0", "1.2") == 0,
    compareVersions("1.10.0", "1.9.9") == 1.
    """
    left = parseVersionSegments(first)
    right = parseVersionSegments(second)
    for idx in range(max(len(left), len(right))):
        leftPart = left[idx] if idx < len(left) else 0
        rightPart = right[idx] if idx < len(right) else 0
        if leftPart > rightPart:
            return 1
        if leftPart < rightPart:
            return -1
    return 0



def isNewer(remote: str | None, installed: str | None) -> bool:
    return compareVersions(remote, installed) > 0
