"""Store protocol for cache persistence, plus an in-process implementation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


@dataclass(frozen=True)
class CacheEntry:
    """One persisted result for a cache key."""

    hash: str
    data: Any
    created_at: datetime


@runtime_checkable
class CacheStore(Protocol):
    """Minimal store protocol: find, create, count, destroy.

    Stores are shared, externally owned handles. The runtime never assumes
    exclusive access and tolerates concurrent writers for the same key.
    """

    async def find(
        self, hash: str, *, created_after: datetime, limit: int = 1
    ) -> Sequence[CacheEntry]:
        """Return entries for ``hash`` newer than ``created_after``, newest first."""
        ...

    async def create(self, hash: str, data: Any) -> None:
        """Persist a new entry for ``hash``."""
        ...

    async def count(self, hash: str, *, created_at_or_before: datetime) -> int:
        """Count entries for ``hash`` created at or before the boundary."""
        ...

    async def destroy(
        self, hash: str, *, created_at_or_before: datetime, skip: int = 0
    ) -> int:
        """Delete matching entries newest first, keeping the newest ``skip``."""
        ...


def is_usable_store(store: object) -> bool:
    """A store can back a cache only when ``find`` and ``create`` are callable."""
    return callable(getattr(store, "find", None)) and callable(
        getattr(store, "create", None)
    )


def utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryStore:
    """Process-local store keeping entries in insertion order per key.

    Single-process only; entries are lost with the process. ``clock`` is
    injectable so expiry can be exercised deterministically.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, list[CacheEntry]] = {}
        self._lock = asyncio.Lock()

    def put(self, hash: str, data: Any, *, created_at: datetime) -> CacheEntry:
        """Insert an entry with an explicit timestamp (seeding and backfills)."""
        entry = CacheEntry(hash=hash, data=data, created_at=created_at)
        self._entries.setdefault(hash, []).append(entry)
        return entry

    def entries(self, hash: str) -> list[CacheEntry]:
        """Entries for ``hash``, newest first."""
        return _newest_first(self._entries.get(hash, []))

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    async def find(
        self, hash: str, *, created_after: datetime, limit: int = 1
    ) -> list[CacheEntry]:
        async with self._lock:
            fresh = [e for e in self.entries(hash) if e.created_at > created_after]
        return fresh[:limit] if limit > 0 else fresh

    async def create(self, hash: str, data: Any) -> None:
        async with self._lock:
            self.put(hash, data, created_at=self._clock())

    async def count(self, hash: str, *, created_at_or_before: datetime) -> int:
        async with self._lock:
            return sum(
                1
                for e in self._entries.get(hash, [])
                if e.created_at <= created_at_or_before
            )

    async def destroy(
        self, hash: str, *, created_at_or_before: datetime, skip: int = 0
    ) -> int:
        async with self._lock:
            stale = [
                e for e in self.entries(hash) if e.created_at <= created_at_or_before
            ]
            doomed = {id(e) for e in stale[max(0, skip) :]}
            kept = [e for e in self._entries.get(hash, []) if id(e) not in doomed]
            if kept:
                self._entries[hash] = kept
            else:
                self._entries.pop(hash, None)
            return len(doomed)


def _newest_first(entries: list[CacheEntry]) -> list[CacheEntry]:
    # equal timestamps: the later insert counts as newer
    indexed = list(enumerate(entries))
    indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [e for _, e in indexed]
