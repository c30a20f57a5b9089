import asyncio

import pytest

from conftest import makeMod
from modengine.core.errors import FetchFailedError
from modengine.mods.update_checker import UpdateChecker, UpdateInfo, notification


def _sourced(modId: str, repository: str, **fields):
    owner, repo = repository.split("/")
    return makeMod(modId, source={"owner": owner, "repo": repo}, **fields)


@pytest.mark.asyncio
async def test_only_strictly_newer_remote_is_reported(registry, store, fetcher, clock):
    await registry.upsert(_sourced("one", "o/one", version="1.0.0"))
    await registry.upsert(_sourced("two", "o/two", version="1.0.0"))
    fetcher.publish("o/one", version="1.1.0")
    fetcher.publish("o/two", version="1.0")
    writes = store.writeCount

    updates = await UpdateChecker(registry, fetcher, clock=clock).checkAll()

    assert updates == [UpdateInfo(id="one", name="One", currentVersion="1.0.0", newVersion="1.1.0")]
    assert registry.require("one").updateAvailable == "1.1.0"
    assert registry.require("two").updateAvailable is None
    assert store.writeCount == writes + 1


@pytest.mark.asyncio
async def test_per_mod_failures_are_isolated(registry, fetcher, clock):
    await registry.upsert(_sourced("bad", "o/bad"))
    await registry.upsert(_sourced("good", "o/good"))
    await registry.upsert(makeMod("local"))
    fetcher.fail("o/bad", FetchFailedError("down"))
    fetcher.publish("o/good", version="2.0.0")

    updates = await UpdateChecker(registry, fetcher, clock=clock).checkAll()

    assert [update.id for update in updates] == ["good"]
    assert sorted(fetcher.fetchCalls) == ["o/bad", "o/good"]


@pytest.mark.asyncio
async def test_unparseable_remote_version_does_not_abort_the_pass(registry, fetcher, clock):
    await registry.upsert(_sourced("odd", "o/odd", version="1.0.0"))
    await registry.upsert(_sourced("good", "o/good", version="1.0.0"))
    fetcher.publish("o/odd", version="1.²")
    fetcher.publish("o/good", version="2.0.0")

    updates = await UpdateChecker(registry, fetcher, clock=clock).checkAll()

    assert [update.id for update in updates] == ["good"]
    assert registry.require("good").updateAvailable == "2.0.0"
    assert registry.require("odd").updateAvailable is None


@pytest.mark.asyncio
async def test_store_written_once_per_pass_regardless_of_mod_count(registry, store, fetcher, clock):
    for idx in range(10):
        await registry.upsert(_sourced(f"m{idx}", f"o/m{idx}"))
        fetcher.publish(f"o/m{idx}", version="9.0.0")
    writes = store.writeCount

    updates = await UpdateChecker(registry, fetcher, clock=clock).checkAll()

    assert len(updates) == 10
    assert store.writeCount == writes + 1


@pytest.mark.asyncio
async def test_no_write_when_nothing_changes(registry, store, fetcher, clock):
    await registry.upsert(_sourced("one", "o/one", version="1.0.0"))
    fetcher.publish("o/one", version="1.0.0")
    writes = store.writeCount

    assert await UpdateChecker(registry, fetcher, clock=clock).checkAll() == []
    assert store.writeCount == writes


@pytest.mark.asyncio
async def test_stale_update_flag_is_cleared(registry, fetcher, clock):
    await registry.upsert(_sourced("one", "o/one", version="2.0.0", updateAvailable="2.0.0"))
    fetcher.publish("o/one", version="2.0.0")

    await UpdateChecker(registry, fetcher, clock=clock).checkAll()

    assert registry.require("one").updateAvailable is None


@pytest.mark.asyncio
async def test_concurrent_callers_join_in_flight_check(registry, fetcher, clock):
    await registry.upsert(_sourced("one", "o/one"))
    fetcher.publish("o/one", version="1.5.0")
    fetcher.gate = asyncio.Event()
    checker = UpdateChecker(registry, fetcher, clock=clock)

    first = asyncio.create_task(checker.checkAll())
    second = asyncio.create_task(checker.checkAll())
    await asyncio.sleep(0)
    assert checker.running
    fetcher.gate.set()

    resultFirst, resultSecond = await asyncio.gather(first, second)

    assert resultFirst == resultSecond
    assert fetcher.fetchCalls == ["o/one"]
    assert not checker.running


@pytest.mark.asyncio
async def test_checkIfDue_runs_at_most_once_per_interval(registry, fetcher, clock):
    await registry.upsert(_sourced("one", "o/one"))
    fetcher.publish("o/one", version="1.5.0")
    checker = UpdateChecker(registry, fetcher, intervalMs=1_000, clock=clock)

    assert await checker.checkIfDue() is not None
    assert await checker.checkIfDue() is None
    clock.advance(999)
    assert await checker.checkIfDue() is None
    clock.advance(1)
    assert await checker.checkIfDue() is not None
    assert len(fetcher.fetchCalls) == 2


@pytest.mark.asyncio
async def test_periodic_loop_survives_errors_and_stops(registry, fetcher, clock, monkeypatch):
    checker = UpdateChecker(registry, fetcher, intervalMs=1, clock=clock)
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("first pass blew up")
        return []

    monkeypatch.setattr(checker, "checkIfDue", flaky)
    checker.start(pollMs=1)
    for _ in range(50):
        if calls >= 2:
            break
        await asyncio.sleep(0.01)
    await checker.stop()

    assert calls >= 2


@pytest.mark.asyncio
async def test_start_without_immediate_check_waits_an_interval(registry, fetcher, clock):
    checker = UpdateChecker(registry, fetcher, intervalMs=1_000, clock=clock)
    checker.start(pollMs=10_000, checkNow=False)
    assert not checker.isDue()
    await checker.stop()


def test_notification():
    assert notification([]) is None
    one = notification([UpdateInfo("a", "A", "1", "2")])
    assert one == {"title": "Mod Updates Available", "message": "1 mod has updates available"}
    many = notification([UpdateInfo("a", "A", "1", "2"), UpdateInfo("b", "B", "1", "2")])
    assert many["message"] == "2 mods have updates available"
