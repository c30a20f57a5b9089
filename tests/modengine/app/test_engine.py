import pytest

from modengine.app.engine import ModEngine, createStore
from modengine.config.settings import EngineSettings
from modengine.mods.injector import RecordingExecutor
from modengine.storage.kvstore import FileKeyValueStore, MemoryKeyValueStore


def test_createStore_follows_storage_settings(tmp_path):
    assert isinstance(createStore(EngineSettings()), MemoryKeyValueStore)
    onDisk = EngineSettings.model_validate({"storage": {"path": str(tmp_path / "kv.json5")}})
    assert isinstance(createStore(onDisk), FileKeyValueStore)


def test_build_wires_one_instance_of_each_component():
    engine = ModEngine.build(EngineSettings(), MemoryKeyValueStore())
    assert isinstance(engine.injector.executor, RecordingExecutor)
    assert engine.fetcher.layout == "raw"
    assert engine.checker.intervalMs == 24 * 60 * 60 * 1000
    other = ModEngine.build(EngineSettings(), MemoryKeyValueStore())
    assert other.registry is not engine.registry


@pytest.mark.asyncio
async def test_start_merges_shipped_defaults_and_stop_is_idempotent(tmp_path):
    settings = EngineSettings.model_validate({
        "storage": {"path": str(tmp_path / "kv.json5")},
        "updates": {"checkOnStart": False},
    })
    engine = ModEngine.build(settings)

    report = await engine.start()
    assert report is not None
    assert set(report.added) == {"dark-mode", "ad-blocker"}
    assert await engine.start() is None

    await engine.stop()
    await engine.stop()

    # Persisted registry survives a restart, and the second merge is a no-op
    restarted = ModEngine.build(settings)
    second = await restarted.start()
    await restarted.stop()
    assert second is not None
    assert second.changed is False
    assert {mod.id for mod in restarted.registry.list()} == {"dark-mode", "ad-blocker"}


@pytest.mark.asyncio
async def test_missing_defaults_file_is_not_fatal(tmp_path):
    settings = EngineSettings.model_validate({
        "defaults": {"path": str(tmp_path / "absent.json5")},
        "updates": {"checkOnStart": False},
    })
    engine = ModEngine.build(settings, MemoryKeyValueStore())
    report = await engine.start()
    await engine.stop()
    assert report is not None and report.added == []
