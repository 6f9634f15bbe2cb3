"""Execution pipeline: cache lookup, then the implementation run."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import TYPE_CHECKING, Any

from machina._singleflight import join_or_lead
from machina.cache import (
    evict_stale,
    is_missing,
    lookup,
    spawn_background,
    write_through,
)
from machina.errors import CacheError, DuplicateDispatchError, ValidationError
from machina.hashing import compute_input_hash
from machina.outcome import Failure, OutcomeDispatcher, Success, call_handler

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from machina.cache import CachePolicy
    from machina.outcome import Outcome
    from machina.unit import Unit

logger = logging.getLogger(__name__)

# single_flight executions in progress, keyed by (id(store), cache key)
_inflight: dict[tuple[int, str], asyncio.Future[Outcome]] = {}
_inflight_lock = asyncio.Lock()


@dataclass(frozen=True)
class CacheSession:
    """Cache state resolved once per execution.

    ``boundary`` is computed a single time so lookup, eviction and
    write-through agree on what "expired" means for this call.
    """

    policy: CachePolicy
    key: str | None
    boundary: datetime

    @property
    def enabled(self) -> bool:
        return self.key is not None


class _OnceDispatcher(OutcomeDispatcher):
    """Dispatcher handed to an implementation: first dispatch wins."""

    __slots__ = ("_on_repeat", "_on_settled", "dispatched")

    def __init__(
        self,
        inner: OutcomeDispatcher,
        *,
        on_repeat: Callable[[BaseException], Any],
        on_settled: Callable[[Outcome], None] | None = None,
    ) -> None:
        super().__init__(
            inner.handlers, catch_all=inner.catch_all, on_unrouted=inner.on_unrouted
        )
        self._on_repeat = on_repeat
        self._on_settled = on_settled
        self.dispatched = False

    async def dispatch(self, outcome: Outcome) -> Any:
        if self.dispatched:
            self._on_repeat(
                DuplicateDispatchError(
                    f"Ignoring outcome {outcome.name!r}: "
                    "an outcome was already dispatched",
                    hint="An implementation must dispatch exactly one outcome.",
                )
            )
            return None
        self.dispatched = True
        try:
            return await super().dispatch(outcome)
        finally:
            if self._on_settled is not None:
                self._on_settled(outcome)


def _open_session(
    unit: Unit, policy: CachePolicy, inputs: Mapping[str, Any]
) -> CacheSession:
    boundary = policy.expiration_boundary(policy.clock())
    if not policy.is_active:
        if policy.store is not None:
            logger.debug(
                "Cache store %r lacks find/create; caching disabled", policy.store
            )
        return CacheSession(policy=policy, key=None, boundary=boundary)
    try:
        key = compute_input_hash(inputs, scope=unit.declaration.identity)
    except CacheError as exc:
        unit.warn(exc)
        key = None
    return CacheSession(policy=policy, key=key, boundary=boundary)


def _intercept(
    unit: Unit, dispatcher: OutcomeDispatcher, session: CacheSession
) -> OutcomeDispatcher:
    """Wrap the cached outcome so the store write precedes delivery."""
    if not session.enabled:
        return dispatcher

    name = session.policy.cached_outcome
    store = session.policy.store
    key = session.key
    assert key is not None

    if dispatcher.handles(name):
        handler = dispatcher.handlers[name]

        async def _deliver(value: Any) -> Any:
            return await call_handler(handler, value)

    elif dispatcher.catch_all is not None:
        catch_all = dispatcher.catch_all

        async def _deliver(value: Any) -> Any:
            return await call_handler(catch_all, name, value)

    else:
        return dispatcher

    async def _write_then_deliver(value: Any) -> Any:
        await write_through(store, key, value, warn=unit.warn)
        return await _deliver(value)

    return dispatcher.with_handler(name, _write_then_deliver)


async def _invoke(
    unit: Unit,
    inputs: dict[str, Any],
    dispatcher: OutcomeDispatcher,
    *,
    on_settled: Callable[[Outcome], None] | None = None,
) -> None:
    guarded = _OnceDispatcher(dispatcher, on_repeat=unit.warn, on_settled=on_settled)
    try:
        await call_handler(unit.declaration.fn, inputs, guarded, unit.context)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        if guarded.dispatched:
            # Raised by a caller's handler (or after the outcome was delivered).
            raise
        await guarded.failure(exc)


async def _run_coalesced(
    unit: Unit,
    inputs: dict[str, Any],
    dispatcher: OutcomeDispatcher,
    session: CacheSession,
) -> None:
    assert session.key is not None
    flight_key = (id(session.policy.store), session.key)
    fut, leader = await join_or_lead(
        flight_key, lock=_inflight_lock, inflight=_inflight
    )

    if not leader:
        logger.debug("Joining in-flight execution for key %s", session.key[:12])
        try:
            outcome = await asyncio.shield(fut)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if not fut.cancelled() or (task is not None and task.cancelling()):
                raise
            # The leader ended without an outcome: run independently.
            logger.debug(
                "In-flight execution for key %s was abandoned", session.key[:12]
            )
            await _invoke(unit, inputs, _intercept(unit, dispatcher, session))
            return
        await dispatcher.dispatch(outcome)
        return

    def _settle(outcome: Outcome) -> None:
        if not fut.done():
            fut.set_result(outcome)

    try:
        await _invoke(
            unit, inputs, _intercept(unit, dispatcher, session), on_settled=_settle
        )
    except BaseException as exc:
        if not fut.done():
            if isinstance(exc, asyncio.CancelledError):
                fut.cancel()
            else:
                fut.set_exception(exc)
        raise
    finally:
        # Returned without dispatching: release followers and later callers.
        if not fut.done():
            fut.cancel()


async def execute_unit(
    unit: Unit,
    dispatcher: OutcomeDispatcher,
    *,
    cache: CachePolicy | Mapping[str, Any] | None = None,
) -> None:
    """Execute ``unit`` once, delivering exactly one outcome via ``dispatcher``.

    Order of operations:
    1. Resolve the cache policy (reserved ``_cache`` input and ``cache``).
    2. Validate inputs, when a validator is configured.
    3. Compute the cache key; on failure, warn and run uncached.
    4. Look up a fresh entry; a hit dispatches ``Success(data)`` and returns.
    5. On a miss, start background eviction without awaiting it.
    6. Run the implementation with the cached outcome intercepted.
    """
    policy = unit.take_cache_policy(cache)
    inputs = dict(unit.inputs)

    if unit.validator is not None:
        try:
            inputs = unit.validator.validate(unit.declaration, inputs)
        except ValidationError as exc:
            await dispatcher.dispatch(Failure(exc))
            return

    session = _open_session(unit, policy, inputs)

    if session.enabled:
        assert session.key is not None
        try:
            data = await lookup(
                policy.store, session.key, created_after=session.boundary
            )
        except CacheError as exc:
            unit.warn(exc)
        else:
            if not is_missing(data):
                logger.debug("Cache hit for %r (key %s)", unit, session.key[:12])
                await dispatcher.dispatch(Success(data))
                return
            logger.debug("Cache miss for %r (key %s)", unit, session.key[:12])

        spawn_background(
            evict_stale(
                policy.store,
                session.key,
                boundary=session.boundary,
                keep=policy.max_stale_buffer,
                warn=unit.warn,
            ),
            name=f"machina-evict-{session.key[:12]}",
        )

        if policy.single_flight:
            await _run_coalesced(unit, inputs, dispatcher, session)
            return

    await _invoke(unit, inputs, _intercept(unit, dispatcher, session))
