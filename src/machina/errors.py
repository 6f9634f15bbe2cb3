"""Exception hierarchy for Machina."""

from __future__ import annotations

from typing import Any


class MachinaError(Exception):
    """Base exception for all Machina errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(MachinaError):
    """Configuration validation or resolution failed."""


class InvalidDeclarationError(MachinaError):
    """A unit could not be built from the supplied definition."""


class ValidationError(MachinaError):
    """Configured input values were rejected by the input validator."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        input_name: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.input_name = input_name


class UnroutedOutcomeError(MachinaError):
    """An outcome had no registered handler and no catch-all."""

    def __init__(self, name: str, value: Any = None) -> None:
        super().__init__(
            f"No handler registered for outcome {name!r} and no catch-all configured",
            hint="Register a handler for this outcome or pass catch_all=...",
        )
        self.name = name
        self.value = value


class DuplicateDispatchError(MachinaError):
    """An implementation dispatched more than one outcome in one execution."""


class MissingOutcomeError(MachinaError):
    """An implementation returned without dispatching any outcome."""


class HaltError(MachinaError):
    """Default failure dispatched by a halt unit."""


class CacheError(MachinaError):
    """A cache step failed.

    Cache errors are always recoverable: the pipeline downgrades them to
    warnings and carries on as if the cache were absent.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        key: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.key = key
        self.phase = phase


class HashComputationError(CacheError):
    """Configured inputs could not be hashed into a cache key."""


class StoreLookupError(CacheError):
    """The store failed to look up cached entries."""


class StoreCountError(CacheError):
    """The store failed to count expired entries."""


class StoreDeleteError(CacheError):
    """The store failed to delete expired entries."""


class StoreCreateError(CacheError):
    """The store failed to persist a new entry."""
