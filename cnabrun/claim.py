"""Installation claims: records of operations performed on a bundle."""

from __future__ import annotations

import dataclasses
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import semver

from .result import STATUS_UNKNOWN, Result, _format_timestamp, new_result
from .ulid import new_ulid

CNAB_SPEC_VERSION = "cnab-claim-1.0.0-DRAFT+b5ed2f3"

ACTION_INSTALL = "install"
ACTION_UPGRADE = "upgrade"
ACTION_UNINSTALL = "uninstall"
ACTION_UNKNOWN = "unknown"

BUILTIN_ACTIONS = frozenset({ACTION_INSTALL, ACTION_UPGRADE, ACTION_UNINSTALL})

_VALID_NAME = re.compile(r"[a-zA-Z0-9._-]+")
_SPEC_VERSION = re.compile(r"^cnab-[a-z-]*?-(\d.*)$")


class ClaimError(ValueError):
    """Raised when a claim is invalid or an operation on it cannot complete."""


def validate_schema_version(version: str) -> None:
    """Raise ClaimError unless ``version`` is a semantic version."""
    try:
        semver.Version.parse(version)
    except (ValueError, TypeError):
        raise ClaimError(f'invalid schema version "{version}": Invalid Semantic Version') from None


def get_semver(spec_version: str) -> str:
    """Return the semver portion of a prefixed spec version such as ``cnab-claim-1.0.0``."""
    match = _SPEC_VERSION.match(spec_version)
    if match is None:
        raise ClaimError(f'unable to determine the semver portion of "{spec_version}"')
    version = match.group(1)
    validate_schema_version(version)
    return version


def default_schema_version() -> str:
    """Return the claim schema version this package implements."""
    return get_semver(CNAB_SPEC_VERSION)


def is_valid_name(name: str) -> bool:
    """Report whether ``name`` is a valid installation name."""
    return _VALID_NAME.fullmatch(name) is not None


def _now() -> datetime:
    return datetime.now(timezone.utc).astimezone()


@dataclass
class Claim:
    """A receipt for an operation on an installation."""

    schema_version: str = ""
    id: str = ""
    installation: str = ""
    revision: str = ""
    created: datetime | None = None
    action: str = ""
    bundle: dict[str, Any] = field(default_factory=dict)
    bundle_reference: str = ""
    parameters: dict[str, Any] | None = None
    custom: Any = None
    _results: list[Result] | None = field(default=None, init=False, repr=False)

    @property
    def results(self) -> list[Result] | None:
        """The results loaded onto the claim, or None when none were loaded."""
        return self._results

    def load_results(self, results) -> None:
        """Attach results to the claim to build the in-memory hierarchy."""
        self._results = list(results)
        for result in self._results:
            result.claim = self

    def new_claim(self, action: str, bundle: dict[str, Any], parameters: dict[str, Any] | None) -> Claim:
        """Create a follow-up claim for the same installation."""
        updated = dataclasses.replace(
            self,
            bundle=bundle,
            action=action,
            parameters=parameters,
            created=_now(),
            id=new_ulid(),
        )
        updated._results = self._results
        if updated.is_modifying_action():
            updated.revision = new_ulid()
        return updated

    def is_modifying_action(self) -> bool:
        """Report whether the claim's action modifies the installation."""
        if self.action in BUILTIN_ACTIONS:
            return True
        actions = (self.bundle or {}).get("actions") or {}
        if self.action not in actions:
            raise ClaimError(f'custom action not defined "{self.action}"')
        return bool((actions[self.action] or {}).get("modifies", False))

    def new_result(self, status: str) -> Result:
        return new_result(self, status)

    def validate(self) -> None:
        """Raise ClaimError when the claim is incomplete or inconsistent."""
        try:
            validate_schema_version(self.schema_version)
        except ClaimError as err:
            raise ClaimError(f"claim validation failed: {err}") from err
        if not self.id:
            raise ClaimError("the claim id must be set")
        if not self.revision:
            raise ClaimError("the revision must be set")
        if not self.installation:
            raise ClaimError("the installation must be set")
        if not self.action:
            raise ClaimError("the action must be set")
        if self.action not in BUILTIN_ACTIONS:
            actions = (self.bundle or {}).get("actions") or {}
            if self.action not in actions:
                raise ClaimError(f'action "{self.action}" is not defined in the bundle')

    def get_last_result(self) -> Result:
        """Return the most recent result by id."""
        if self._results is None:
            raise ClaimError("the claim does not have results loaded")
        if not self._results:
            raise ClaimError("the claim has no results")
        self._results.sort(key=lambda r: r.id)
        return self._results[-1]

    def get_status(self) -> str:
        """Return the status of the last result, or "unknown"."""
        try:
            return self.get_last_result().status
        except ClaimError:
            return STATUS_UNKNOWN

    def has_logs(self) -> bool | None:
        """Report whether logs were persisted; None when results are not loaded."""
        if self._results is None:
            return None
        return any(result.has_logs() for result in self._results)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "schemaVersion": self.schema_version,
            "id": self.id,
            "installation": self.installation,
            "revision": self.revision,
            "created": _format_timestamp(self.created),
            "action": self.action,
            "bundle": self.bundle,
        }
        if self.bundle_reference:
            data["bundleReference"] = self.bundle_reference
        if self.parameters:
            data["parameters"] = self.parameters
        if self.custom is not None:
            data["custom"] = self.custom
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def new_claim(
    installation: str,
    action: str,
    bundle: dict[str, Any],
    parameters: dict[str, Any] | None,
) -> Claim:
    """Create a claim for a new operation on ``installation``."""
    if not is_valid_name(installation):
        raise ClaimError(
            f'invalid installation name "{installation}". Names must be [a-zA-Z0-9-_]+'
        )
    created = _now()
    claim_id = new_ulid()
    revision = new_ulid()
    return Claim(
        schema_version=default_schema_version(),
        id=claim_id,
        installation=installation,
        revision=revision,
        created=created,
        action=action,
        bundle=bundle,
        parameters=parameters,
    )