"""MemoryStore contract tests: freshness queries, counting, eviction order."""

from __future__ import annotations

from datetime import timedelta

import pytest

from machina.store import CacheEntry, CacheStore, MemoryStore, is_usable_store
from tests.conftest import FixedClock

pytestmark = pytest.mark.unit


def _seed(store: MemoryStore, clock: FixedClock, *ages_min: int) -> None:
    for i, age in enumerate(ages_min):
        store.put("h", f"v{i}", created_at=clock.now - timedelta(minutes=age))


def test_memory_store_satisfies_protocol() -> None:
    assert isinstance(MemoryStore(), CacheStore)
    assert is_usable_store(MemoryStore())


def test_store_without_find_or_create_is_not_usable() -> None:
    class WriteOnly:
        async def create(self, hash: str, data: object) -> None: ...

    class NotCallable:
        find = None
        create = None

    assert not is_usable_store(WriteOnly())
    assert not is_usable_store(NotCallable())
    assert not is_usable_store(None)


@pytest.mark.asyncio
async def test_find_returns_newest_fresh_entry_first(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)
    _seed(store, clock, 30, 5, 10)

    found = await store.find(
        "h", created_after=clock.now - timedelta(minutes=20), limit=5
    )

    assert [e.data for e in found] == ["v1", "v2"]
    assert all(isinstance(e, CacheEntry) for e in found)


@pytest.mark.asyncio
async def test_find_excludes_entries_exactly_at_the_boundary(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)
    boundary = clock.now - timedelta(minutes=10)
    store.put("h", "edge", created_at=boundary)

    assert await store.find("h", created_after=boundary) == []


@pytest.mark.asyncio
async def test_create_stamps_with_clock(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)

    await store.create("h", {"x": 1})

    [entry] = store.entries("h")
    assert entry.created_at == clock.now
    assert entry.data == {"x": 1}


@pytest.mark.asyncio
async def test_count_includes_boundary(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)
    _seed(store, clock, 10, 20, 1)

    boundary = clock.now - timedelta(minutes=10)

    assert await store.count("h", created_at_or_before=boundary) == 2
    assert await store.count("other", created_at_or_before=boundary) == 0


@pytest.mark.asyncio
async def test_destroy_keeps_newest_expired_entries(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)
    _seed(store, clock, 40, 20, 30, 1)
    boundary = clock.now - timedelta(minutes=10)

    deleted = await store.destroy("h", created_at_or_before=boundary, skip=1)

    assert deleted == 2
    assert [e.data for e in store.entries("h")] == ["v3", "v1"]


@pytest.mark.asyncio
async def test_destroy_everything_drops_the_key(clock: FixedClock) -> None:
    store = MemoryStore(clock=clock)
    _seed(store, clock, 40)

    await store.destroy("h", created_at_or_before=clock.now, skip=0)

    assert store.entries("h") == []
    assert len(store) == 0
