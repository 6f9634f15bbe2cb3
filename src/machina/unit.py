"""Units: declarations and the configurable instances built from them."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import copy
import dataclasses
from dataclasses import dataclass, field
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from machina.cache import RESERVED_CACHE_INPUT, CachePolicy
from machina.errors import (
    ConfigurationError,
    HaltError,
    InvalidDeclarationError,
    MissingOutcomeError,
)
from machina.execute import execute_unit
from machina.outcome import (
    Failure,
    OutcomeDispatcher,
    normalize_outcomes,
    outcome_for,
)
from machina.validation import ExampleValidator

if TYPE_CHECKING:
    from machina.outcome import Outcome
    from machina.validation import InputValidator

logger = logging.getLogger(__name__)

_DECLARATION_KEYS = ("id", "inputs", "exits", "fn", "description")


@dataclass(frozen=True)
class UnitDeclaration:
    """What a unit needs, what it may resolve to, and how it runs.

    ``fn`` is called as ``fn(inputs, outcomes, context)`` and must dispatch
    exactly one outcome through ``outcomes``.
    """

    fn: Callable[..., Any]
    id: str | None = None
    inputs: Mapping[str, Any] = field(default_factory=dict)
    exits: Mapping[str, Any] = field(default_factory=dict)
    description: str | None = None

    def __post_init__(self) -> None:
        if not callable(self.fn):
            raise InvalidDeclarationError(
                f"Unit declaration {self.id or '<anonymous>'!r} has no callable fn",
                hint="A declaration needs: id, inputs, exits, fn.",
            )

    @property
    def identity(self) -> str:
        """Stable type identity used to scope cache keys."""
        if self.id:
            return self.id
        module = getattr(self.fn, "__module__", None) or "?"
        name = getattr(self.fn, "__qualname__", None) or repr(self.fn)
        return f"{module}:{name}"

    @classmethod
    def coerce(cls, definition: Any) -> UnitDeclaration:
        """Accept a declaration, a mapping of its fields, or a bare function."""
        if isinstance(definition, UnitDeclaration):
            return definition
        if isinstance(definition, Mapping):
            fields = {k: definition[k] for k in _DECLARATION_KEYS if k in definition}
            if not callable(fields.get("fn")):
                raise InvalidDeclarationError(
                    "Failed to build a unit from the given definition: "
                    "no callable 'fn'.\n"
                    f"Expected keys: {', '.join(_DECLARATION_KEYS)}\n"
                    f"Got: {dict(definition)!r}",
                    hint="Provide fn=async def fn(inputs, outcomes, context): ...",
                )
            fields["inputs"] = dict(fields.get("inputs") or {})
            fields["exits"] = dict(fields.get("exits") or {})
            return cls(**fields)
        if callable(definition):
            return cls(fn=definition)
        raise InvalidDeclarationError(
            f"Failed to build a unit from a {type(definition).__name__}: "
            f"{definition!r}",
            hint="Pass a mapping with an 'fn' key, a UnitDeclaration, or a function.",
        )


async def _noop(inputs: Any, outcomes: OutcomeDispatcher, context: Any) -> None:
    await outcomes.success()


def _failing(exc: BaseException) -> Callable[..., Any]:
    async def _fail(inputs: Any, outcomes: OutcomeDispatcher, context: Any) -> None:
        await outcomes.failure(exc)

    return _fail


def _raise(exc: BaseException, *_args: Any) -> None:
    raise exc


class Unit:
    """A configurable, reusable instance of a unit declaration.

    Configuration calls merge into the instance (last write wins per key) and
    return it for chaining. Instances are meant for one owner configuring
    sequentially; they are not safe for concurrent reconfiguration.
    """

    def __init__(
        self,
        declaration: UnitDeclaration | Mapping[str, Any] | Callable[..., Any],
        *,
        on_error: Callable[[BaseException], Any] | None = None,
        on_warn: Callable[..., Any] | None = None,
        validator: InputValidator | None = None,
    ) -> None:
        self.on_error = on_error
        self.on_warn = on_warn
        try:
            self._declaration = UnitDeclaration.coerce(declaration)
        except InvalidDeclarationError as exc:
            self.error(exc)
            # on_error chose to continue: the unit fails with the same error
            self._declaration = UnitDeclaration(fn=_failing(exc), id="invalid")
        self.validator = validator
        self._inputs: dict[str, Any] = {}
        self._outcomes = OutcomeDispatcher(on_unrouted=self.error)
        self._context: dict[str, Any] = {}
        self._cache_policy = CachePolicy()

    # --- Construction ---
    @classmethod
    def build(
        cls,
        definition: Any = None,
        *,
        on_error: Callable[[BaseException], Any] | None = None,
        on_warn: Callable[..., Any] | None = None,
        validator: InputValidator | None = None,
    ) -> Unit:
        """Build a unit, reporting an invalid definition through ``on_error``.

        Without ``on_error`` the ``InvalidDeclarationError`` is raised. When a
        handler is configured and returns, the unit is still built and every
        execution fails with that error. No definition at all builds a no-op
        unit.
        """
        if definition is None:
            return cls.noop(on_error=on_error, on_warn=on_warn)
        return cls(definition, on_error=on_error, on_warn=on_warn, validator=validator)

    @classmethod
    def noop(cls, **kwargs: Any) -> Unit:
        """A unit that does nothing but reach its success outcome."""
        return cls(UnitDeclaration(fn=_noop, id="noop"), **kwargs)

    @classmethod
    def halt(cls, error: BaseException | None = None, **kwargs: Any) -> Unit:
        """A unit that always fails with ``error`` (or a ``HaltError``)."""

        async def _halt(inputs: Any, outcomes: OutcomeDispatcher, context: Any) -> None:
            await outcomes.failure(error or HaltError("Halted"))

        return cls(UnitDeclaration(fn=_halt, id="halt"), **kwargs)

    # --- Read-only views ---
    @property
    def declaration(self) -> UnitDeclaration:
        return self._declaration

    @property
    def id(self) -> str | None:
        return self._declaration.id

    @property
    def inputs(self) -> Mapping[str, Any]:
        return MappingProxyType(self._inputs)

    @property
    def outcomes(self) -> OutcomeDispatcher:
        return self._outcomes

    @property
    def context(self) -> Mapping[str, Any]:
        return MappingProxyType(self._context)

    @property
    def cache_policy(self) -> CachePolicy:
        return self._cache_policy

    # --- Configuration ---
    def set_inputs(self, inputs: Mapping[str, Any]) -> Unit:
        """Merge input values; values are deep-copied so callers keep theirs."""
        values = dict(inputs)
        cache_settings = values.pop(RESERVED_CACHE_INPUT, None)
        self._inputs.update(copy.deepcopy(values))
        if cache_settings is not None:
            # Holds a live store handle, so it is never copied.
            self._inputs[RESERVED_CACHE_INPUT] = cache_settings
        return self

    def set_outcomes(self, outcomes: Any) -> Unit:
        self._outcomes = self._outcomes.merged(normalize_outcomes(outcomes))
        return self

    def set_context(self, context: Mapping[str, Any]) -> Unit:
        self._context.update(context)
        return self

    def set_cache_policy(
        self, policy: CachePolicy | Mapping[str, Any] | None = None, **overrides: Any
    ) -> Unit:
        self._cache_policy = self._cache_policy.merged(policy).merged(overrides or None)
        return self

    cache = set_cache_policy

    def configure(
        self,
        inputs: Mapping[str, Any] | None = None,
        outcomes: Any = None,
        context: Mapping[str, Any] | None = None,
    ) -> Unit:
        if outcomes is not None:
            self.set_outcomes(outcomes)
        if inputs is not None:
            self.set_inputs(inputs)
        if context is not None:
            self.set_context(context)
        return self

    def input_coercion(self, enabled: bool = True) -> Unit:
        """Validate inputs against declared examples, coercing when ``enabled``."""
        self.validator = ExampleValidator(coerce=enabled)
        return self

    def take_cache_policy(
        self, override: CachePolicy | Mapping[str, Any] | None = None
    ) -> CachePolicy:
        """Resolve the policy for one execution.

        Settings smuggled in through the reserved ``_cache`` input are folded
        into the instance policy and removed from the inputs; ``override``
        applies to this execution only. Invalid settings from either channel
        are reported through ``warn`` and the execution runs uncached.
        """
        legacy = self._inputs.pop(RESERVED_CACHE_INPUT, None)
        try:
            if legacy is not None:
                self._cache_policy = self._cache_policy.merged(legacy)
            return self._cache_policy.merged(override)
        except ConfigurationError as exc:
            self.warn(exc)
            return dataclasses.replace(self._cache_policy, store=None)

    # --- Execution ---
    async def execute(
        self,
        outcomes: Any = None,
        *,
        cache: CachePolicy | Mapping[str, Any] | None = None,
    ) -> Unit:
        """Run the unit once, serving from cache when a fresh entry exists."""
        if outcomes is not None:
            self.set_outcomes(outcomes)
        await execute_unit(self, self._outcomes, cache=cache)
        return self

    async def run(
        self, *, cache: CachePolicy | Mapping[str, Any] | None = None
    ) -> Outcome:
        """Run the unit once and return the dispatched outcome.

        Configured handlers are bypassed; the outcome is returned, never raised.
        An implementation that returns without dispatching resolves to
        ``Failure(MissingOutcomeError)``.
        """
        settled: list[Outcome] = []

        def _capture(name: str, value: Any) -> None:
            if not settled:
                settled.append(outcome_for(name, value))

        capture = OutcomeDispatcher(catch_all=_capture, on_unrouted=self.error)
        await execute_unit(self, capture, cache=cache)
        if not settled:
            return Failure(
                MissingOutcomeError(
                    f"{self!r} returned without dispatching an outcome",
                    hint="An implementation must dispatch exactly one outcome.",
                )
            )
        return settled[0]

    # --- Signals ---
    def error(self, exc: BaseException, *args: Any) -> Unit:
        """Report a fatal condition via ``on_error``, raising ``exc`` by default."""
        (self.on_error or _raise)(exc, *args)
        return self

    def warn(self, warning: Any, *args: Any) -> Unit:
        """Report a recoverable condition via ``on_warn``, logging by default."""
        if self.on_warn is not None:
            self.on_warn(warning, *args)
            return self
        if isinstance(warning, BaseException):
            logger.warning(
                "%s: %s", type(warning).__name__, warning, exc_info=warning
            )
        else:
            logger.warning(str(warning), *args)
        return self

    def __repr__(self) -> str:
        return f"Unit({self._declaration.identity!r})"
