import asyncio
import sys
from typing import Any

import pytest

from modengine.core.errors import ModNotFoundError
from modengine.mods.injector import RecordingExecutor
from modengine.mods.models import Manifest, Mod, ModSource
from modengine.mods.registry import ModRegistry
from modengine.storage.kvstore import MemoryKeyValueStore



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")



class FakeFetcher:
    """
    Stands in for ManifestFetcher. Manifests and asset files are keyed by
    "owner/repo"; a stored exception is raised instead of returned.
    """

    def __init__(self) -> None:
        self.manifests: dict[str, Manifest | BaseException] = {}
        self.files: dict[str, dict[str, str]] = {}
        self.fetchCalls: list[str] = []
        self.gate: asyncio.Event | None = None

    def publish(self, repository: str, **manifest: Any) -> Manifest:
        doc: dict[str, Any] = {"name": repository, "version": "1.0.0", "js": "console.log(1)"}
        if "matches" not in manifest and "targetSites" not in manifest:
            doc["matchAll"] = True
        doc.update(manifest)
        parsed = Manifest.model_validate(doc)
        self.manifests[repository] = parsed
        return parsed

    def fail(self, repository: str, err: BaseException) -> None:
        self.manifests[repository] = err

    async def fetch(self, source: ModSource) -> Manifest:
        self.fetchCalls.append(source.repository)
        if self.gate is not None:
            await self.gate.wait()
        entry = self.manifests.get(source.repository)
        if entry is None:
            raise ModNotFoundError(f"mod.json not found in {source}", status=404)
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def fetchAssets(self, source: ModSource, manifest: Manifest | None = None) -> dict[str, str]:
        return dict(self.files.get(source.repository, {}))



class FakeClock:
    def __init__(self, start: int = 1_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms



def makeMod(modId: str, **fields: Any) -> Mod:
    data: dict[str, Any] = {"id": modId, "name": modId.title(), "version": "1.0.0"}
    data.update(fields)
    return Mod.model_validate(data)



@pytest.fixture()
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()



@pytest.fixture()
def registry(store: MemoryKeyValueStore) -> ModRegistry:
    return ModRegistry(store)



@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()



@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()



@pytest.fixture()
def executor() -> RecordingExecutor:
    return RecordingExecutor()
