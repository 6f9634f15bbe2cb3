"""Deterministic cache identity for configured inputs.

The key covers the declaration identity and the configured input values
only. Context and outcome handlers never participate, so every instance of
the same declaration pointed at the same store shares cache entries.

Keys are stable across processes: sets are ordered by the canonical text of
their elements (their iteration order follows ``PYTHONHASHSEED``), and
mappings with non-string keys are encoded as tagged ``[key, value]`` pairs so
``{1: "a"}`` and ``{"1": "a"}`` hash differently.
"""

from __future__ import annotations

from collections.abc import Mapping
import hashlib
import json
from typing import Any

from pydantic_core import PydanticSerializationError, to_jsonable_python

from machina.errors import HashComputationError

#: Tag for mappings whose keys are not all strings.
_PAIRS_TAG = "__machina_pairs__"


def _dumps(value: Any) -> str:
    return json.dumps(
        to_jsonable_python(value),
        sort_keys=True,
        separators=(",", ":"),
        allow_nan=False,
    )


def _stable(value: Any) -> Any:
    """Rewrite order-unstable containers into a canonical, JSON-ready form."""
    if isinstance(value, (set, frozenset)):
        return sorted((_stable(v) for v in value), key=_dumps)
    if isinstance(value, Mapping):
        if all(isinstance(k, str) for k in value):
            return {k: _stable(v) for k, v in value.items()}
        pairs = [[_stable(k), _stable(v)] for k, v in value.items()]
        return {_PAIRS_TAG: sorted(pairs, key=lambda pair: _dumps(pair[0]))}
    if isinstance(value, (list, tuple)):
        return [_stable(v) for v in value]
    return value


def canonical_payload(inputs: Mapping[str, Any], *, scope: str | None = None) -> str:
    """Return the canonical JSON text hashed for ``inputs``.

    Raises:
        HashComputationError: If a value has no JSON representation.
    """
    try:
        return _dumps({"scope": scope, "inputs": _stable(dict(inputs))})
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise HashComputationError(
            f"Could not compute a cache key for the configured inputs: {exc}",
            hint="Cache keys require JSON-representable input values.",
            phase="hash",
        ) from exc


def compute_input_hash(inputs: Mapping[str, Any], *, scope: str | None = None) -> str:
    """Compute the SHA-256 cache key for ``inputs`` within ``scope``."""
    text = canonical_payload(inputs, scope=scope)
    return hashlib.sha256(text.encode()).hexdigest()
