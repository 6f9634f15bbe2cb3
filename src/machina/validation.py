"""Input validation: the validator protocol and an example-driven default."""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import pydantic
from pydantic import TypeAdapter

from machina.errors import ValidationError

if TYPE_CHECKING:
    from machina.unit import UnitDeclaration


@runtime_checkable
class InputValidator(Protocol):
    """Checks configured inputs before a unit runs.

    Implementations return the (possibly coerced) inputs or raise
    ``ValidationError``.
    """

    def validate(
        self, declaration: UnitDeclaration, inputs: Mapping[str, Any]
    ) -> dict[str, Any]: ...


def _annotation_for(example: Any) -> Any:
    # bool before int: bool is an int subclass
    if isinstance(example, bool):
        return bool
    if isinstance(example, int):
        return int
    if isinstance(example, float):
        return float
    if isinstance(example, str):
        return str
    if isinstance(example, (list, tuple)):
        return list[Any]
    if isinstance(example, Mapping):
        return dict[str, Any]
    return Any


@lru_cache(maxsize=None)
def _adapter(annotation: Any) -> TypeAdapter[Any]:
    return TypeAdapter(annotation)


class ExampleValidator:
    """Validate inputs against the type of each declared ``example``.

    With ``coerce`` on, pydantic's lax mode converts compatible values
    (``"4"`` for an ``int`` example); with it off, values must already have
    the example's type. Inputs without a declaration pass through untouched.
    """

    def __init__(self, *, coerce: bool = True) -> None:
        self.coerce = coerce

    def validate(
        self, declaration: UnitDeclaration, inputs: Mapping[str, Any]
    ) -> dict[str, Any]:
        result = dict(inputs)
        for name, declared in declaration.inputs.items():
            declared = declared if isinstance(declared, Mapping) else {}
            if name not in inputs:
                if declared.get("required"):
                    raise ValidationError(
                        f"Missing required input {name!r}",
                        hint=f"Pass {name}=... via set_inputs() or configure().",
                        input_name=name,
                    )
                continue
            if "example" not in declared:
                continue

            adapter = _adapter(_annotation_for(declared["example"]))
            try:
                result[name] = adapter.validate_python(
                    inputs[name], strict=not self.coerce
                )
            except pydantic.ValidationError as exc:
                expected = type(declared["example"]).__name__
                raise ValidationError(
                    f"Input {name!r} does not match its example type {expected}: "
                    f"{inputs[name]!r}",
                    hint=None
                    if self.coerce
                    else "Enable input coercion to convert compatible values.",
                    input_name=name,
                ) from exc
        return result
