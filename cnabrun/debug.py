"""A driver that prints the operation instead of running it."""

from __future__ import annotations

import json
import sys

from .driver import Configurable, Driver, Operation, OperationResult


class DebugDriver(Driver, Configurable):
    """Prints the operation it is given and never runs the image."""

    def __init__(self) -> None:
        self.settings: dict[str, str] = {}

    def run(self, op: Operation) -> OperationResult:
        stream = op.out if op.out is not None else sys.stdout
        print(json.dumps(op.to_dict(), indent=2), file=stream)
        return OperationResult()

    def handles(self, image_type: str) -> bool:
        """Claim support for every image type."""
        return True

    def config(self) -> dict[str, str]:
        return {"VERBOSE": "Increase verbosity. true, false are supported values"}

    def set_config(self, settings: dict[str, str]) -> None:
        self.settings = settings