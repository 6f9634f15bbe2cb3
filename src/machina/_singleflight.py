"""Async single-flight helper.

Used to coordinate concurrent executions for the same cache key so only one
coroutine runs the implementation, while others await the same Future.
"""

from __future__ import annotations

import asyncio
from typing import Any, TypeVar

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    try:
        _ = fut.exception()
    except asyncio.CancelledError:
        return


async def join_or_lead(
    key: K,
    *,
    lock: asyncio.Lock,
    inflight: dict[K, asyncio.Future[T]],
) -> tuple[asyncio.Future[T], bool]:
    """Return the Future for ``key`` and whether the caller must produce it.

    - If an unfinished flight is registered, the caller is a follower and
      should await the returned Future.
    - Otherwise a new Future is registered and the caller is the leader; it
      must eventually resolve the Future. The entry is removed once resolved.
    """
    async with lock:
        fut = inflight.get(key)
        # a finished flight may linger until its release callback runs
        if fut is not None and not fut.done():
            return fut, False

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(consume_future_exception)
        fut.add_done_callback(lambda done: _release(inflight, key, done))
        inflight[key] = fut
        return fut, True


def _release(
    inflight: dict[K, asyncio.Future[T]], key: K, fut: asyncio.Future[T]
) -> None:
    if inflight.get(key) is fut:
        del inflight[key]
