"""Outcome variants and the dispatcher that routes them to handlers.

An implementation resolves to exactly one outcome per execution:

- ``Success(value)`` routes to the ``"success"`` handler.
- ``Failure(error)`` routes to the ``"error"`` handler.
- ``Named(name, value)`` routes to the handler registered under ``name``.

Anything without a registered handler falls through to the catch-all, which
receives ``(name, value)`` so nothing is silently dropped.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
import inspect
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from machina.errors import UnroutedOutcomeError

if TYPE_CHECKING:
    from collections.abc import Callable

SUCCESS = "success"
ERROR = "error"
#: Mapping key accepted as the catch-all handler in plain handler mappings.
CATCH_ALL = "*"


@dataclasses.dataclass(frozen=True, slots=True)
class Success:
    """The implementation reached its success exit."""

    value: Any = None

    @property
    def name(self) -> str:
        return SUCCESS


@dataclasses.dataclass(frozen=True, slots=True)
class Failure:
    """The implementation failed with ``error``."""

    error: Any

    @property
    def name(self) -> str:
        return ERROR

    @property
    def value(self) -> Any:
        return self.error


@dataclasses.dataclass(frozen=True, slots=True)
class Named:
    """The implementation reached a domain-specific exit."""

    name: str
    value: Any = None


Outcome = Success | Failure | Named


def resolve(outcome: Outcome) -> tuple[str, Any]:
    """Return the ``(name, value)`` pair an outcome routes by."""
    match outcome:
        case Success(value=value):
            return SUCCESS, value
        case Failure(error=error):
            return ERROR, error
        case Named(name=name, value=value):
            return name, value
        case _:
            raise TypeError(
                f"Expected Success, Failure or Named, got {type(outcome).__name__}"
            )


def outcome_for(name: str, value: Any = None) -> Outcome:
    """Build the canonical variant for an outcome name."""
    if name == SUCCESS:
        return Success(value)
    if name == ERROR:
        return Failure(value)
    return Named(name, value)


def _raise(exc: BaseException) -> None:
    raise exc


async def call_handler(fn: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async handler, awaiting it when needed."""
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class OutcomeDispatcher:
    """Route one outcome to one handler.

    Dispatchers are immutable; ``merged`` and ``with_handler`` return copies.
    Dispatching more than once is a caller error that the dispatcher itself
    does not police.
    """

    __slots__ = ("_catch_all", "_handlers", "_on_unrouted")

    def __init__(
        self,
        handlers: Mapping[str, Callable[..., Any]] | None = None,
        *,
        catch_all: Callable[[str, Any], Any] | None = None,
        on_unrouted: Callable[[UnroutedOutcomeError], Any] | None = None,
    ) -> None:
        table = dict(handlers or {})
        star = table.pop(CATCH_ALL, None)
        for name, fn in table.items():
            if not callable(fn):
                raise TypeError(f"Handler for outcome {name!r} is not callable")
        self._handlers: dict[str, Callable[..., Any]] = table
        self._catch_all = catch_all if catch_all is not None else star
        self._on_unrouted = on_unrouted or _raise

    @property
    def handlers(self) -> Mapping[str, Callable[..., Any]]:
        return MappingProxyType(self._handlers)

    @property
    def catch_all(self) -> Callable[[str, Any], Any] | None:
        return self._catch_all

    @property
    def on_unrouted(self) -> Callable[[UnroutedOutcomeError], Any]:
        return self._on_unrouted

    def handles(self, name: str) -> bool:
        """Whether ``name`` has a dedicated handler (the catch-all excluded)."""
        return name in self._handlers

    def merged(self, other: Any) -> OutcomeDispatcher:
        """Layer ``other``'s handlers on top of this dispatcher's."""
        incoming = normalize_outcomes(other)
        return OutcomeDispatcher(
            {**self._handlers, **incoming._handlers},
            catch_all=incoming._catch_all or self._catch_all,
            on_unrouted=self._on_unrouted,
        )

    def with_handler(self, name: str, fn: Callable[..., Any]) -> OutcomeDispatcher:
        return OutcomeDispatcher(
            {**self._handlers, name: fn},
            catch_all=self._catch_all,
            on_unrouted=self._on_unrouted,
        )

    def with_unrouted(
        self, on_unrouted: Callable[[UnroutedOutcomeError], Any]
    ) -> OutcomeDispatcher:
        return OutcomeDispatcher(
            self._handlers, catch_all=self._catch_all, on_unrouted=on_unrouted
        )

    async def dispatch(self, outcome: Outcome) -> Any:
        """Invoke exactly one handler for ``outcome`` and return its result."""
        name, value = resolve(outcome)
        handler = self._handlers.get(name)
        if handler is not None:
            return await call_handler(handler, value)
        if self._catch_all is not None:
            return await call_handler(self._catch_all, name, value)
        return self._on_unrouted(UnroutedOutcomeError(name, value))

    async def __call__(self, outcome: Outcome) -> Any:
        return await self.dispatch(outcome)

    async def success(self, value: Any = None) -> Any:
        return await self.dispatch(Success(value))

    async def failure(self, error: Any) -> Any:
        return await self.dispatch(Failure(error))

    async def exit(self, name: str, value: Any = None) -> Any:
        """Dispatch by outcome name; ``"success"``/``"error"`` map to their variants."""
        return await self.dispatch(outcome_for(name, value))

    def __repr__(self) -> str:
        names = ", ".join(sorted(self._handlers))
        star = ", *" if self._catch_all is not None else ""
        return f"OutcomeDispatcher({names}{star})"


def normalize_outcomes(outcomes: Any) -> OutcomeDispatcher:
    """Coerce handlers into an ``OutcomeDispatcher``.

    Accepts ``None``, an existing dispatcher, a mapping of outcome name to
    handler, or a single callable which becomes the catch-all.
    """
    if outcomes is None:
        return OutcomeDispatcher()
    if isinstance(outcomes, OutcomeDispatcher):
        return outcomes
    if isinstance(outcomes, Mapping):
        return OutcomeDispatcher(outcomes)
    if callable(outcomes):
        return OutcomeDispatcher(catch_all=outcomes)
    raise TypeError(
        "outcomes must be a mapping of handlers, a callable, or an OutcomeDispatcher; "
        f"got {type(outcomes).__name__}"
    )
