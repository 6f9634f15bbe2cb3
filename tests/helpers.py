"""Test helpers (small, reusable declarations and handler recorders).

Keep this file tiny and purpose-built: it exists to stop test modules from
redefining the same implementation functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from machina import OutcomeDispatcher, UnitDeclaration


@dataclass
class Recorder:
    """Collects handler invocations as ``(outcome_name, value)`` pairs."""

    received: list[tuple[str, Any]] = field(default_factory=list)
    events: list[tuple[Any, ...]] | None = None

    def handler(self, name: str):
        def _record(value: Any) -> None:
            self.received.append((name, value))
            if self.events is not None:
                self.events.append(("handler", name, value))

        return _record

    def catch_all(self, name: str, value: Any) -> None:
        self.received.append((name, value))
        if self.events is not None:
            self.events.append(("handler", name, value))

    def handlers(self, *names: str) -> dict[str, Any]:
        return {n: self.handler(n) for n in names or ("success", "error")}

    def values(self, name: str = "success") -> list[Any]:
        return [v for n, v in self.received if n == name]


@dataclass
class CountingDeclaration:
    """A declaration whose implementation doubles ``n`` and counts runs."""

    id: str = "double"
    runs: list[dict[str, Any]] = field(default_factory=list)

    async def fn(
        self, inputs: dict[str, Any], outcomes: OutcomeDispatcher, context: Any
    ) -> None:
        self.runs.append(dict(inputs))
        await outcomes.success(inputs["n"] * 2)

    @property
    def declaration(self) -> UnitDeclaration:
        return UnitDeclaration(
            fn=self.fn,
            id=self.id,
            inputs={"n": {"example": 1, "required": True}},
            exits={"success": {}, "error": {}},
        )
