"""Credential sets: named collections of credentials and where to find them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .result import _format_timestamp

DEFAULT_SCHEMA_VERSION = "1.0.0-DRAFT+b6c701f"
CNAB_SPEC_VERSION = "cnab-credentialsets-" + DEFAULT_SCHEMA_VERSION


class CredentialError(ValueError):
    """Raised when credentials are missing or cannot be resolved."""


@dataclass
class CredentialStrategy:
    """A credential name and the source its value is resolved from."""

    name: str
    source_key: str = ""
    source_value: str = ""
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "source": {self.source_key: self.source_value}}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CredentialStrategy:
        name = str(data.get("name", ""))
        source = data.get("source") or {}
        if not isinstance(source, Mapping) or len(source) != 1:
            raise CredentialError(f'credential "{name}": source must have exactly one key')
        (key, value), = source.items()
        return cls(name=name, source_key=str(key), source_value=str(value))


def _to_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class CredentialSet:
    """A named collection of credentials."""

    schema_version: str = ""
    name: str = ""
    created: datetime | None = None
    modified: datetime | None = None
    credentials: list[CredentialStrategy] = field(default_factory=list)

    def resolve_credentials(self, store: Any) -> dict[str, str]:
        """Resolve every credential through ``store`` and return name -> value.

        ``store`` is any object with a ``resolve(key, value)`` method.
        """
        resolved: dict[str, str] = {}
        for credential in self.credentials:
            try:
                value = store.resolve(credential.source_key, credential.source_value)
            except Exception as err:
                raise CredentialError(f'credential "{credential.name}": {err}') from err
            resolved[credential.name] = value
        return resolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "name": self.name,
            "created": _format_timestamp(self.created),
            "modified": _format_timestamp(self.modified),
            "credentials": [credential.to_dict() for credential in self.credentials],
        }


def new_credential_set(name: str, *args: CredentialStrategy) -> CredentialSet:
    """Create a credential set with its schema version and timestamps set."""
    now = datetime.now(timezone.utc).astimezone()
    return CredentialSet(
        schema_version=DEFAULT_SCHEMA_VERSION,
        name=name,
        created=now,
        modified=now,
        credentials=list(args),
    )


def load(path: str | Path) -> CredentialSet:
    """Load a credential set from a YAML file without resolving its credentials."""
    data = yaml.safe_load(Path(path).read_text()) or {}
    return CredentialSet(
        schema_version=str(data.get("schemaVersion", "")),
        name=str(data.get("name", "")),
        created=_to_datetime(data.get("created")),
        modified=_to_datetime(data.get("modified")),
        credentials=[CredentialStrategy.from_dict(item) for item in data.get("credentials") or []],
    )


def validate(given: Mapping[str, str], spec: Mapping[str, Mapping[str, Any]], action: str) -> None:
    """Raise CredentialError if a required credential for ``action`` is missing."""
    for name, credential in spec.items():
        credential = credential or {}
        apply_to = credential.get("applyTo") or []
        if apply_to and action not in apply_to:
            continue
        if name not in given and credential.get("required", False):
            raise CredentialError(f"bundle requires credential for {name}")