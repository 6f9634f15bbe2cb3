"""Outcome dispatch boundary tests: routing, catch-all, normalization."""

from __future__ import annotations

import pytest

from machina.errors import UnroutedOutcomeError
from machina.outcome import (
    Failure,
    Named,
    OutcomeDispatcher,
    Success,
    normalize_outcomes,
    outcome_for,
    resolve,
)
from tests.helpers import Recorder

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_success_routes_to_success_handler() -> None:
    rec = Recorder()
    dispatcher = OutcomeDispatcher(rec.handlers("success", "error"))

    await dispatcher.success(42)

    assert rec.received == [("success", 42)]


@pytest.mark.asyncio
async def test_failure_routes_to_error_handler_with_the_error() -> None:
    rec = Recorder()
    dispatcher = OutcomeDispatcher(rec.handlers("success", "error"))
    boom = RuntimeError("boom")

    await dispatcher.failure(boom)

    assert rec.received == [("error", boom)]


@pytest.mark.asyncio
async def test_unknown_outcome_goes_to_catch_all_with_its_name() -> None:
    rec = Recorder()
    dispatcher = OutcomeDispatcher(rec.handlers("success"), catch_all=rec.catch_all)

    await dispatcher.exit("retry", "X")

    assert rec.received == [("retry", "X")]


@pytest.mark.asyncio
async def test_failure_without_error_handler_falls_back_to_catch_all() -> None:
    rec = Recorder()
    dispatcher = OutcomeDispatcher({"*": rec.catch_all})
    boom = ValueError("bad")

    await dispatcher.dispatch(Failure(boom))

    assert rec.received == [("error", boom)]


@pytest.mark.asyncio
async def test_unrouted_outcome_raises_by_default() -> None:
    dispatcher = OutcomeDispatcher({"success": lambda v: None})

    with pytest.raises(UnroutedOutcomeError) as exc:
        await dispatcher.exit("retry", 1)

    assert exc.value.name == "retry"
    assert exc.value.value == 1


@pytest.mark.asyncio
async def test_unrouted_outcome_goes_through_override() -> None:
    seen: list[UnroutedOutcomeError] = []
    dispatcher = OutcomeDispatcher(on_unrouted=seen.append)

    await dispatcher.success("lost")

    assert [e.name for e in seen] == ["success"]


@pytest.mark.asyncio
async def test_async_handlers_are_awaited() -> None:
    seen: list[str] = []

    async def on_success(value: str) -> str:
        seen.append(value)
        return "handled"

    result = await OutcomeDispatcher({"success": on_success}).success("v")

    assert seen == ["v"]
    assert result == "handled"


@pytest.mark.asyncio
async def test_named_success_and_error_route_like_their_variants() -> None:
    rec = Recorder()
    dispatcher = OutcomeDispatcher(rec.handlers("success", "error"))

    await dispatcher.dispatch(Named("success", 1))
    await dispatcher.exit("error", "e")

    assert rec.received == [("success", 1), ("error", "e")]


def test_outcome_variants_resolve_to_name_and_value() -> None:
    boom = RuntimeError()
    assert resolve(Success(1)) == ("success", 1)
    assert resolve(Failure(boom)) == ("error", boom)
    assert resolve(Named("partial", [1])) == ("partial", [1])
    assert outcome_for("partial", 2) == Named("partial", 2)
    assert outcome_for("error", boom) == Failure(boom)


def test_resolve_rejects_non_outcomes() -> None:
    with pytest.raises(TypeError):
        resolve(("success", 1))  # type: ignore[arg-type]


def test_normalize_accepts_mapping_callable_and_dispatcher() -> None:
    def everything(name: str, value: object) -> None:
        return None

    existing = OutcomeDispatcher({"success": print})

    assert normalize_outcomes(None).handlers == {}
    assert normalize_outcomes({"success": print}).handles("success")
    assert normalize_outcomes(everything).catch_all is everything
    assert normalize_outcomes(existing) is existing


def test_normalize_rejects_non_callable_handlers() -> None:
    with pytest.raises(TypeError):
        normalize_outcomes({"success": "not callable"})
    with pytest.raises(TypeError):
        normalize_outcomes(42)


def test_merged_is_last_write_wins_and_immutable() -> None:
    def first(v: object) -> None: ...
    def second(v: object) -> None: ...
    def star(name: str, v: object) -> None: ...

    base = OutcomeDispatcher({"success": first, "error": first})
    merged = base.merged({"success": second, "*": star})

    assert merged.handlers["success"] is second
    assert merged.handlers["error"] is first
    assert merged.catch_all is star
    assert base.handlers["success"] is first
    assert base.catch_all is None
