# modengine/core/time.py
from __future__ import annotations
import time

__all__ = ["nowMonotonicMs", "nowMs"]



def nowMonotonicMs() -> int:
    """Returns the current monotonic time in milliseconds."""
    return int(time.perf_counter() * 1000)



def nowMs() -> int:
    """Wall-clock milliseconds since epoch; used for lastUpdated/installedAt."""
    return int(time.time() * 1000)
