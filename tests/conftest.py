"""Pytest configuration and fixtures.

Provides store and clock test doubles, environment isolation, and logging
configuration. Environment fixtures are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
import logging
import os
from typing import Any

import pytest

from machina.store import MemoryStore

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FixedClock:
    """Deterministic clock shared by a store and a cache policy."""

    now: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingStore(MemoryStore):
    """MemoryStore that records every call and can fail on demand.

    ``events`` is a shared list so tests can assert ordering between store
    calls and handler invocations. Operation names listed in ``fail`` raise
    ``RuntimeError`` instead of touching the entries.
    """

    def __init__(
        self,
        *,
        clock: FixedClock,
        events: list[tuple[Any, ...]] | None = None,
        fail: set[str] | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self.events: list[tuple[Any, ...]] = events if events is not None else []
        self.fail: set[str] = set(fail or ())

    def calls(self, op: str) -> list[tuple[Any, ...]]:
        return [e for e in self.events if e[0] == op]

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise RuntimeError(f"{op} unavailable")

    async def find(
        self, hash: str, *, created_after: datetime, limit: int = 1
    ) -> list[Any]:
        self.events.append(("find", hash, created_after))
        self._check("find")
        return await super().find(hash, created_after=created_after, limit=limit)

    async def create(self, hash: str, data: Any) -> None:
        self.events.append(("create", hash, data))
        self._check("create")
        await super().create(hash, data)

    async def count(self, hash: str, *, created_at_or_before: datetime) -> int:
        self.events.append(("count", hash, created_at_or_before))
        self._check("count")
        return await super().count(hash, created_at_or_before=created_at_or_before)

    async def destroy(
        self, hash: str, *, created_at_or_before: datetime, skip: int = 0
    ) -> int:
        self.events.append(("destroy", hash, skip))
        self._check("destroy")
        return await super().destroy(
            hash, created_at_or_before=created_at_or_before, skip=skip
        )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(clock: FixedClock) -> RecordingStore:
    return RecordingStore(clock=clock)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_machina_env(request, monkeypatch):
    """Clear MACHINA_* variables so defaults are deterministic.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("MACHINA_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("asyncio").setLevel(logging.WARNING)
