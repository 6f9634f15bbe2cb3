"""Machina: a runtime for self-describing units of computation.

Public API:
    - Unit: build, configure and execute a unit
    - UnitDeclaration: what a unit needs, may resolve to, and runs
    - OutcomeDispatcher / Success / Failure / Named: outcome routing
    - CachePolicy / CacheStore / MemoryStore: result caching
    - Config: environment-backed defaults
"""

from __future__ import annotations

import logging
from typing import Any

from machina.cache import CachePolicy, drain_background
from machina.config import Config
from machina.errors import (
    CacheError,
    ConfigurationError,
    DuplicateDispatchError,
    HaltError,
    HashComputationError,
    InvalidDeclarationError,
    MachinaError,
    MissingOutcomeError,
    StoreCountError,
    StoreCreateError,
    StoreDeleteError,
    StoreLookupError,
    UnroutedOutcomeError,
    ValidationError,
)
from machina.hashing import compute_input_hash
from machina.outcome import (
    Failure,
    Named,
    Outcome,
    OutcomeDispatcher,
    Success,
    normalize_outcomes,
)
from machina.store import CacheEntry, CacheStore, MemoryStore
from machina.unit import Unit, UnitDeclaration
from machina.validation import ExampleValidator, InputValidator

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("machina-runtime")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("machina").addHandler(logging.NullHandler())


def build(definition: Any = None, **kwargs: Any) -> Unit:
    """Build a Unit from a declaration, mapping, or function.

    Example:
        unit = machina.build({"id": "double", "fn": double})
        outcome = await unit.configure({"n": 2}).run()
    """
    return Unit.build(definition, **kwargs)


load = build

__all__ = [
    "CacheEntry",
    "CacheError",
    "CachePolicy",
    "CacheStore",
    "Config",
    "ConfigurationError",
    "DuplicateDispatchError",
    "ExampleValidator",
    "Failure",
    "HaltError",
    "HashComputationError",
    "InputValidator",
    "InvalidDeclarationError",
    "MachinaError",
    "MemoryStore",
    "MissingOutcomeError",
    "Named",
    "Outcome",
    "OutcomeDispatcher",
    "StoreCountError",
    "StoreCreateError",
    "StoreDeleteError",
    "StoreLookupError",
    "Success",
    "Unit",
    "UnitDeclaration",
    "UnroutedOutcomeError",
    "ValidationError",
    "build",
    "compute_input_hash",
    "drain_background",
    "load",
    "normalize_outcomes",
]
