"""Cache: policy, lookup, write-through and background eviction.

Every store interaction is best-effort. Failures are wrapped in a
``CacheError`` subclass and handed to the caller's warning sink; they never
change which outcome an execution delivers, only whether it came from cache.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Any

from machina.config import (
    DEFAULT_CACHED_OUTCOME,
    DEFAULT_MAX_STALE_BUFFER,
    DEFAULT_TTL_MS,
)
from machina.errors import (
    ConfigurationError,
    StoreCountError,
    StoreCreateError,
    StoreDeleteError,
    StoreLookupError,
)
from machina.store import is_usable_store, utcnow

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from machina.config import Config

logger = logging.getLogger(__name__)

#: Input key still honoured as an ad-hoc cache override channel.
RESERVED_CACHE_INPUT = "_cache"

# Spellings accepted from older cache settings mappings.
_LEGACY_KEYS = {
    "model": "store",
    "ttl": "ttl_ms",
    "maxOldEntriesBuffer": "max_stale_buffer",
    "exit": "cached_outcome",
}

_MISSING = object()


@dataclass(frozen=True)
class CachePolicy:
    """Cache settings for one unit.

    A policy without a usable store (``find`` and ``create`` callable) is
    inactive and caching is skipped without error.
    """

    store: Any = None
    ttl_ms: int = DEFAULT_TTL_MS
    #: Expired entries tolerated per key before a cleanup pass runs.
    max_stale_buffer: int = DEFAULT_MAX_STALE_BUFFER
    #: Only results reaching this outcome are persisted.
    cached_outcome: str = DEFAULT_CACHED_OUTCOME
    #: Coalesce concurrent misses for the same key within this process.
    single_flight: bool = False
    #: Source of "now" for the expiration boundary.
    clock: Callable[[], datetime] = field(default=utcnow, compare=False, repr=False)

    def __post_init__(self) -> None:
        """Validate numeric ranges and the cached outcome name.

        Whole-number floats (``1000.0``) are accepted and stored as ints.
        """
        for name in ("ttl_ms", "max_stale_buffer"):
            value = getattr(self, name)
            if isinstance(value, float) and value.is_integer():
                object.__setattr__(self, name, int(value))
        if not isinstance(self.ttl_ms, int) or self.ttl_ms < 0:
            raise ConfigurationError(
                f"ttl_ms must be an integer ≥ 0, got {self.ttl_ms!r}",
                hint="ttl_ms is the maximum age of a usable entry, in milliseconds.",
            )
        if not isinstance(self.max_stale_buffer, int) or self.max_stale_buffer < 0:
            raise ConfigurationError(
                "max_stale_buffer must be an integer ≥ 0, "
                f"got {self.max_stale_buffer!r}",
                hint="Use 0 to evict expired entries on every cache miss.",
            )
        if not isinstance(self.cached_outcome, str) or not self.cached_outcome:
            raise ConfigurationError(
                "cached_outcome must be a non-empty outcome name",
                hint="The default cached outcome is 'success'.",
            )

    @classmethod
    def from_config(cls, config: Config, *, store: Any = None) -> CachePolicy:
        return cls(
            store=store,
            ttl_ms=config.cache_ttl_ms,
            max_stale_buffer=config.cache_max_stale_buffer,
            cached_outcome=config.cache_outcome,
        )

    @property
    def is_active(self) -> bool:
        return is_usable_store(self.store)

    @property
    def ttl(self) -> timedelta:
        return timedelta(milliseconds=self.ttl_ms)

    def expiration_boundary(self, now: datetime) -> datetime:
        """Entries created at or before this instant are expired."""
        return now - self.ttl

    def merged(self, overrides: CachePolicy | Mapping[str, Any] | None) -> CachePolicy:
        """Return a policy with ``overrides`` applied.

        A ``CachePolicy`` replaces every field; a mapping replaces only the keys
        it names (older key spellings such as ``ttl`` or ``model`` included).
        """
        if overrides is None:
            return self
        if isinstance(overrides, CachePolicy):
            return overrides
        if not isinstance(overrides, Mapping):
            raise ConfigurationError(
                "Cache settings must be a CachePolicy or a mapping, "
                f"got {type(overrides).__name__}",
                hint="Pass cache=CachePolicy(store=...) or cache={'store': ...}.",
            )
        known = {f.name for f in dataclasses.fields(self)}
        changes: dict[str, Any] = {}
        for raw_key, value in overrides.items():
            key = _LEGACY_KEYS.get(raw_key, raw_key)
            if key not in known:
                raise ConfigurationError(
                    f"Unknown cache setting: {raw_key!r}",
                    hint=f"Supported settings: {', '.join(sorted(known))}",
                )
            changes[key] = value
        return dataclasses.replace(self, **changes)


def entry_data(entry: Any) -> Any:
    """Return an entry's data, or a sentinel when the entry carries none.

    ``None`` is a legitimate cached value; only a missing ``data`` field
    makes an entry unusable.
    """
    if isinstance(entry, Mapping):
        return entry.get("data", _MISSING)
    return getattr(entry, "data", _MISSING)


def is_missing(value: Any) -> bool:
    return value is _MISSING


async def lookup(store: Any, key: str, *, created_after: datetime) -> Any:
    """Return the newest fresh data for ``key`` or the missing sentinel.

    Raises:
        StoreLookupError: If the store query fails.
    """
    try:
        found = await store.find(key, created_after=created_after, limit=1)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        raise StoreLookupError(
            f"Cache lookup failed: {exc}", key=key, phase="lookup"
        ) from exc
    for entry in list(found or ())[:1]:
        return entry_data(entry)
    return _MISSING


async def write_through(
    store: Any, key: str, data: Any, *, warn: Callable[[Any], Any]
) -> None:
    """Persist ``data`` under ``key``; failures become warnings."""
    try:
        await store.create(key, data)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        err = StoreCreateError(f"Cache write failed: {exc}", key=key, phase="create")
        err.__cause__ = exc
        warn(err)
    else:
        logger.debug("Cached result for key %s", key[:12])


async def evict_stale(
    store: Any,
    key: str,
    *,
    boundary: datetime,
    keep: int,
    warn: Callable[[Any], Any],
) -> int:
    """Delete expired entries for ``key`` beyond the newest ``keep``.

    Returns the number of entries the store reported deleted (0 when nothing
    was attempted or a step failed).
    """
    can_count = callable(getattr(store, "count", None))
    if not (can_count and callable(getattr(store, "destroy", None))):
        logger.debug("Store %r cannot count/destroy; skipping eviction", store)
        return 0

    try:
        stale = await store.count(key, created_at_or_before=boundary)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        err = StoreCountError(
            f"Cache eviction count failed: {exc}", key=key, phase="count"
        )
        err.__cause__ = exc
        warn(err)
        return 0

    if not isinstance(stale, int) or stale <= keep:
        return 0

    logger.debug(
        "Evicting %d expired entries for key %s (keep %d)", stale - keep, key[:12], keep
    )
    try:
        deleted = await store.destroy(key, created_at_or_before=boundary, skip=keep)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        err = StoreDeleteError(
            f"Cache eviction failed: {exc}", key=key, phase="destroy"
        )
        err.__cause__ = exc
        warn(err)
        return 0
    return deleted if isinstance(deleted, int) else 0


# Strong references keep detached tasks alive until they finish.
_background: set[asyncio.Task[Any]] = set()


def _reap(task: asyncio.Task[Any]) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background cache task %s failed: %s", task.get_name(), exc)


def spawn_background(
    coro: Coroutine[Any, Any, Any], *, name: str | None = None
) -> asyncio.Task[Any]:
    """Start ``coro`` detached from the caller; its failures are only logged."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background.add(task)
    task.add_done_callback(_reap)
    return task


def pending_background() -> int:
    return len(_background)


async def drain_background() -> None:
    """Wait for detached cache tasks on the running loop (shutdown, tests)."""
    loop = asyncio.get_running_loop()
    while pending := [t for t in _background if t.get_loop() is loop]:
        await asyncio.gather(*pending, return_exceptions=True)
