"""``$N.field`` references between the steps of a nested batch."""

import re
from dataclasses import dataclass
from typing import Any

REFERENCE_PATTERN = re.compile(r"^\$(\d+)\.([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)$")


class UnresolvedReference(Exception):
    """A reference does not point at a value produced by an earlier step."""


@dataclass(frozen=True)
class Reference:
    step: int
    path: tuple[str, ...]

    @classmethod
    def parse(cls, value: Any) -> "Reference | None":
        if not isinstance(value, str):
            return None
        match = REFERENCE_PATTERN.match(value.strip())
        if match is None:
            return None
        return cls(step=int(match.group(1)), path=tuple(match.group(2).split(".")))

    def __str__(self) -> str:
        return f"${self.step}.{'.'.join(self.path)}"


def find_references(record_id: Any, data: dict[str, Any]) -> dict[str, Reference]:
    """Map each reference location (``id`` or ``data.{field}``) to its Reference."""
    found = {}
    ref = Reference.parse(record_id)
    if ref is not None:
        found["id"] = ref
    for name, value in data.items():
        ref = Reference.parse(value)
        if ref is not None:
            found[f"data.{name}"] = ref
    return found


class ResultLog:
    """Append-only step results, indexed by step position."""

    def __init__(self):
        self._results: list[dict[str, Any]] = []

    def append(self, result: dict[str, Any]) -> None:
        self._results.append(result)

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> list[dict[str, Any]]:
        return list(self._results)

    def resolve(self, ref: Reference, current: int) -> Any:
        """Look a reference up in the result of an earlier step.

        Raises:
            UnresolvedReference: The step is not strictly earlier than
                *current*, has no result, or lacks the field path
        """
        if ref.step >= current or ref.step >= len(self._results):
            raise UnresolvedReference(f"Reference '{ref}' must point to an earlier operation.")
        value: Any = self._results[ref.step]["data"]
        for segment in ref.path:
            if not isinstance(value, dict) or segment not in value:
                raise UnresolvedReference(f"Reference '{ref}' does not resolve to a value.")
            value = value[segment]
        return value
