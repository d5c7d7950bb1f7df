"""Bundle outputs generated by operations."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from .claim import Claim
from .result import Result


@dataclass
class Output:
    """An output produced by an operation, with the claim and result behind it."""

    claim: Claim
    result: Result
    name: str
    value: bytes | None = None

    def definition(self) -> dict[str, Any] | None:
        """Return the bundle's definition of this output, or None if undefined."""
        outputs = (self.claim.bundle or {}).get("outputs") or {}
        return outputs.get(self.name)

    def schema(self) -> dict[str, Any] | None:
        """Return the schema of this output, or None if it is not defined."""
        definition = self.definition()
        if definition is None:
            return None
        definitions = (self.claim.bundle or {}).get("definitions") or {}
        return definitions.get(definition.get("definition"))


def new_output(claim: Claim, result: Result, name: str, value: bytes | None) -> Output:
    """Create an output tied to a copy of ``result`` that refers back to ``claim``."""
    return Output(
        claim=claim,
        result=dataclasses.replace(result, claim=claim),
        name=name,
        value=value,
    )


class Outputs:
    """Outputs kept in name order and addressable by name or position."""

    def __init__(self, outputs: Iterable[Output] = ()) -> None:
        self._values = sorted(outputs, key=lambda output: output.name)
        self._index = {output.name: i for i, output in enumerate(self._values)}

    def get_by_name(self, name: str) -> Output | None:
        index = self._index.get(name)
        return None if index is None else self._values[index]

    def get_by_index(self, index: int) -> Output | None:
        if 0 <= index < len(self._values):
            return self._values[index]
        return None

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Output]:
        return iter(self._values)