"""Operations passed to drivers and the results drivers return."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, TextIO

IMAGE_TYPE_DOCKER = "docker"
IMAGE_TYPE_OCI = "oci"
IMAGE_TYPE_QCOW = "qcow"


class DriverError(RuntimeError):
    """Raised when a driver cannot complete an operation."""


@dataclass
class Operation:
    """The data a driver needs to run an action in an invocation image."""

    installation: str = ""
    revision: str = ""
    action: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    image: dict[str, Any] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)
    files: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)
    out: TextIO | None = field(default=None, compare=False, repr=False)
    err: TextIO | None = field(default=None, compare=False, repr=False)
    bundle: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "installation_name": self.installation,
            "revision": self.revision,
            "action": self.action,
            "parameters": self.parameters,
            "image": self.image,
            "environment": self.environment,
            "files": self.files,
            "outputs": self.outputs,
            "Bundle": self.bundle,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        return cls(
            installation=data.get("installation_name", ""),
            revision=data.get("revision", ""),
            action=data.get("action", ""),
            parameters=dict(data.get("parameters") or {}),
            image=dict(data.get("image") or {}),
            environment=dict(data.get("environment") or {}),
            files=dict(data.get("files") or {}),
            outputs=dict(data.get("outputs") or {}),
            bundle=data.get("Bundle"),
        )


@dataclass
class ResolvedCred:
    """A credential resolved and ready to inject into the runtime."""

    type: str
    name: str
    value: str


def _applies_to(item: dict[str, Any], action: str) -> bool:
    apply_to = item.get("applyTo") or []
    return not apply_to or action in apply_to


def _format_default(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class OperationResult:
    """Outputs collected from running an operation, and any error."""

    outputs: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None

    def set_default_output_values(self, op: Operation) -> None:
        """Fill in defaults for applicable outputs that were not produced."""
        bundle = op.bundle or {}
        definitions = bundle.get("definitions") or {}
        for name, output in (bundle.get("outputs") or {}).items():
            output = output or {}
            if name in self.outputs or not _applies_to(output, op.action):
                continue
            definition_name = output.get("definition")
            if definition_name not in definitions:
                continue
            default = (definitions[definition_name] or {}).get("default")
            if default is None:
                raise DriverError(f"required output {name} is missing and has no default")
            self.outputs[name] = _format_default(default)


class Driver(ABC):
    """Something that can run an invocation image."""

    @abstractmethod
    def run(self, op: Operation) -> OperationResult:
        """Execute the operation inside the invocation image."""

    @abstractmethod
    def handles(self, image_type: str) -> bool:
        """Report whether the driver supports the given image type."""


class Configurable(ABC):
    """A driver that can describe and accept configuration."""

    @abstractmethod
    def config(self) -> dict[str, str]:
        """Return configuration names mapped to their descriptions."""

    @abstractmethod
    def set_config(self, settings: dict[str, str]) -> None:
        """Apply configuration keyed as in ``config``."""