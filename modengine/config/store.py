# modengine/config/store.py
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .providers import ConfigProvider

__all__ = ["ConfigStore", "deepMerge"]



def deepMerge(base: dict[str, Any], top: Mapping[str, Any]) -> dict[str, Any]:
    """Merge `top` into `base` in place; nested mappings merge, everything else replaces."""
    for key, value in top.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            deepMerge(current, value)
        else:
            base[key] = value
    return base



class ConfigStore:
    """
    Layered, read-only config:
      - get: first hit from the topmost provider down
      - merged: every layer deep-merged bottom to top
      - validated: the merged document run through `validator`
    """

    def __init__(
        self,
        *,
        namespace: str,
        providers: list[ConfigProvider],
        validator: Callable[[dict[str, Any]], Any] | None = None,
    ) -> None:
        if not providers:
            raise ValueError("ConfigStore needs at least one provider")
        self.namespace = namespace
        self._providers = providers
        self._validator = validator

    def merged(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        # Bottom to top
        for provider in self._providers:
            deepMerge(out, provider.to_dict())
        return out

    def get(self, key: str, default: Any | None = None) -> Any | None:
        for provider in reversed(self._providers): # Topmost first precedence
            value = provider.get(key)
            if value is not None:
                return value
        return default

    def validated(self) -> Any:
        merged = self.merged()
        if self._validator is None:
            return merged
        return self._validator(merged)

    def snapshot(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "values": self.merged(),
            "layers": [provider.__class__.__name__ for provider in self._providers],
        }
