from __future__ import annotations

import asyncio
from typing import List

import pytest

from common.errors import MisuseError, StoreWriteError
from common.keys import encode_key, prefix_range
from state.container import StateContainer, set_prop
from state.memory_store import MemoryStore
from sync.loader import load_state
from sync.persister import persist_state


async def settle(seconds: float = 0.1) -> None:
    await asyncio.sleep(seconds)


async def _scan(store, prefix):
    return {e.key: e.value async for e in store.range_scan(*prefix_range(prefix))}


@pytest.mark.asyncio
async def test_same_value_does_not_bump_seq():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix=None, debounce_ms=1)

    container.update(lambda s: {"hello": "world"})
    await settle()
    assert (await store.get("hello")).seq == 1

    container.update(lambda s: {"hello": "world"})
    await settle()
    assert (await store.get("hello")).seq == 1
    await sub.aclose()


@pytest.mark.asyncio
async def test_distinct_values_advance_seq_once_each():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=1)

    container.update(set_prop("k", "v1"))
    await settle()
    container.update(set_prop("k", "v2"))
    await settle()

    history = await store.history(encode_key("p", "k"))
    assert [e.value for e in history] == ["v1", "v2"]
    await sub.aclose()


@pytest.mark.asyncio
async def test_burst_is_coalesced_into_one_write_pass():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=50)

    for i in range(10):
        container.update(set_prop("counter", i))
        await asyncio.sleep(0.001)
    await settle(0.2)

    history = await store.history(encode_key("p", "counter"))
    assert [e.value for e in history] == [9]
    assert sub.snapshots_written == 1
    await sub.aclose()


@pytest.mark.asyncio
async def test_first_snapshot_is_compared_with_state_at_subscription():
    container = StateContainer({"existing": 1})
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=1)

    # Same value as at subscription time: nothing to write
    container.update(lambda s: {"existing": 1})
    await settle()
    assert store.version == 0
    assert sub.snapshots_written == 0

    container.update(set_prop("added", True))
    await settle()
    assert await _scan(store, "p") == {
        encode_key("p", "added"): True,
        encode_key("p", "existing"): 1,
    }
    await sub.aclose()


@pytest.mark.asyncio
async def test_every_key_of_current_snapshot_is_written_in_order():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=1)

    container.update(lambda s: {"b": 1, "a": 2, "c": 3})
    await settle()
    written = [e.key for e in await store.history()]
    assert written == [encode_key("p", k) for k in ("b", "a", "c")]
    assert sub.writes_issued == 3
    await sub.aclose()


@pytest.mark.asyncio
async def test_custom_distinct_keeps_default_cas():
    container = StateContainer()
    store = MemoryStore()
    # Never treat snapshots as equal; per-key CAS must still suppress no-op writes
    sub = persist_state(store, container, prefix="p", debounce_ms=1, distinct=lambda prev, curr: False)

    container.update(set_prop("k", 1))
    await settle()
    container.update(lambda s: dict(s))
    await settle()

    assert sub.snapshots_written == 2
    assert len(await store.history()) == 1
    await sub.aclose()


@pytest.mark.asyncio
async def test_custom_cas_can_force_rewrites():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(
        store,
        container,
        prefix="p",
        debounce_ms=1,
        cas=lambda prev, cand: True,
        distinct=lambda prev, curr: False,
    )

    container.update(set_prop("k", 1))
    await settle()
    container.update(set_prop("k", 1))
    await settle()
    assert [e.seq for e in await store.history()] == [1, 2]
    await sub.aclose()


class _SlowStore(MemoryStore):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.events: List[str] = []

    async def put(self, key, value, *, cas=None):
        self.events.append(f"start {key}={value}")
        await asyncio.sleep(self.delay)
        seq = await super().put(key, value, cas=cas)
        self.events.append(f"end {key}={value}")
        return seq


@pytest.mark.asyncio
async def test_snapshots_are_written_one_after_another():
    container = StateContainer()
    store = _SlowStore(0.02)
    sub = persist_state(store, container, prefix=None, debounce_ms=1)

    container.update(lambda s: {"a": 1, "b": 1})
    await settle(0.01)
    container.update(lambda s: {"a": 2, "b": 2})
    await settle(0.3)

    assert store.events == [
        "start a=1", "end a=1",
        "start b=1", "end b=1",
        "start a=2", "end a=2",
        "start b=2", "end b=2",
    ]
    await sub.aclose()


class _BrokenStore(MemoryStore):
    async def put(self, key, value, *, cas=None):
        if key == "b":
            raise StoreWriteError("store unavailable")
        return await super().put(key, value, cas=cas)


@pytest.mark.asyncio
async def test_write_error_stops_pipeline_and_skips_remaining_keys():
    container = StateContainer()
    store = _BrokenStore()
    sub = persist_state(store, container, prefix=None, debounce_ms=1)

    container.update(lambda s: {"a": 1, "b": 2, "c": 3})
    with pytest.raises(StoreWriteError):
        await asyncio.wait_for(sub.wait(), 1)

    assert sub.done()
    assert isinstance(sub.exception(), StoreWriteError)
    assert [e.key for e in await store.history()] == ["a"]
    assert container.subscriber_count == 0


@pytest.mark.asyncio
async def test_foreign_put_errors_become_store_write_errors():
    class _Exploding(MemoryStore):
        async def put(self, key, value, *, cas=None):
            raise ConnectionError("down")

    container = StateContainer()
    sub = persist_state(_Exploding(), container, prefix=None, debounce_ms=1)
    container.update(set_prop("a", 1))
    with pytest.raises(StoreWriteError):
        await asyncio.wait_for(sub.wait(), 1)


@pytest.mark.asyncio
async def test_non_ascii_and_tilde_keys_load_back():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=1)
    container.update(set_prop("\u00fcber", 1), set_prop("~tilde", 2), set_prop("\u540d\u524d", 3), set_prop("a", 4))
    await settle()
    await sub.aclose()

    assert sub.exception() is None
    assert len(await _scan(store, "p")) == 4
    loaded = await load_state(store, StateContainer(), prefix="p")
    assert loaded.value == {"\u00fcber": 1, "~tilde": 2, "\u540d\u524d": 3, "a": 4}


@pytest.mark.asyncio
async def test_unsubscribe_is_clean_and_stops_writes():
    container = StateContainer()
    store = MemoryStore()
    sub = persist_state(store, container, prefix="p", debounce_ms=50)

    container.update(set_prop("pending", 1))
    sub.unsubscribe()
    await asyncio.wait_for(sub.wait(), 1)
    container.update(set_prop("late", 2))
    await settle()

    assert sub.unsubscribed
    assert sub.exception() is None
    assert store.version == 0
    assert container.subscriber_count == 0


@pytest.mark.asyncio
async def test_unsubscribe_lets_in_flight_write_finish():
    container = StateContainer()
    store = _SlowStore(0.05)
    sub = persist_state(store, container, prefix=None, debounce_ms=1)

    container.update(lambda s: {"a": 1, "b": 2})
    await settle(0.02)
    assert store.events == ["start a=1"]
    sub.unsubscribe()
    await asyncio.wait_for(sub.wait(), 1)

    assert store.events == ["start a=1", "end a=1"]
    assert (await store.get("a")).value == 1
    assert await store.get("b") is None


@pytest.mark.asyncio
async def test_invalid_options_fail_fast():
    with pytest.raises(MisuseError):
        persist_state(MemoryStore(), StateContainer(), debounce_ms=-1)
    with pytest.raises(MisuseError):
        persist_state(MemoryStore(), StateContainer(), prefix="bad\x00prefix")
    with pytest.raises(MisuseError):
        persist_state(MemoryStore(), StateContainer(), cas="not callable")  # type: ignore[arg-type]


def test_requires_running_loop():
    with pytest.raises(RuntimeError):
        persist_state(MemoryStore(), StateContainer(), debounce_ms=1)
