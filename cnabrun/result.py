"""Results of operations run against an installation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from .ulid import new_ulid

if TYPE_CHECKING:
    from .claim import Claim

STATUS_SUCCEEDED = "succeeded"
STATUS_CANCELED = "canceled"
STATUS_FAILED = "failed"
STATUS_RUNNING = "running"
STATUS_PENDING = "pending"
STATUS_UNKNOWN = "unknown"

VALID_STATUSES = frozenset(
    {
        STATUS_CANCELED,
        STATUS_FAILED,
        STATUS_PENDING,
        STATUS_RUNNING,
        STATUS_SUCCEEDED,
        STATUS_UNKNOWN,
    }
)

OUTPUT_CONTENT_DIGEST = "contentDigest"
OUTPUT_GENERATED_BY_BUNDLE = "generatedByBundle"
OUTPUT_INVOCATION_IMAGE_LOGS = "io.cnab.outputs.invocationImageLogs"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_TIMESTAMP = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)


class ResultError(ValueError):
    """Raised when a result is invalid."""


def _format_timestamp(value: datetime | None) -> str:
    """Format a timestamp as RFC 3339 with trimmed fractional seconds."""
    if value is None:
        return "0001-01-01T00:00:00Z"
    if value.tzinfo is None:
        value = value.astimezone()
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, truncating to microseconds."""
    match = _TIMESTAMP.match(text)
    if match is None:
        raise ResultError(f"invalid timestamp {text!r}")
    base, fraction, zone = match.groups()
    micros = ((fraction or "") + "000000")[:6]
    if zone == "Z":
        zone = "+00:00"
    return datetime.fromisoformat(f"{base}.{micros}{zone}")


def _parse_bool(text: str) -> bool | None:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    return None


class OutputMetadata(dict):
    """Metadata about outputs: output name -> metadata key -> value."""

    def get_metadata(self, output_name: str, metadata_key: str) -> str | None:
        """Return the metadata value, or None when it is not recorded."""
        return self.get(output_name, {}).get(metadata_key)

    def set_metadata(self, output_name: str, metadata_key: str, value: str) -> None:
        self.setdefault(output_name, {})[metadata_key] = value

    def get_generated_by_bundle(self, output_name: str) -> bool | None:
        """Return the generated-by-bundle flag, or None if missing or unparseable."""
        text = self.get_metadata(output_name, OUTPUT_GENERATED_BY_BUNDLE)
        if text is None:
            return None
        return _parse_bool(text)

    def set_generated_by_bundle(self, output_name: str, generated_by_bundle: bool) -> None:
        self.set_metadata(
            output_name, OUTPUT_GENERATED_BY_BUNDLE, "true" if generated_by_bundle else "false"
        )

    def get_content_digest(self, output_name: str) -> str | None:
        return self.get_metadata(output_name, OUTPUT_CONTENT_DIGEST)

    def set_content_digest(self, output_name: str, content_digest: str) -> None:
        self.set_metadata(output_name, OUTPUT_CONTENT_DIGEST, content_digest)


@dataclass
class Result:
    """The outcome of an operation on an installation."""

    id: str = ""
    claim_id: str = ""
    created: datetime | None = None
    message: str = ""
    status: str = ""
    output_metadata: OutputMetadata = field(default_factory=OutputMetadata)
    custom: Any = None
    claim: Claim | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.output_metadata, OutputMetadata):
            self.output_metadata = OutputMetadata(
                {name: dict(meta) for name, meta in (self.output_metadata or {}).items()}
            )

    def validate(self) -> None:
        """Raise ResultError when a required field is missing or the status is unknown."""
        if not self.id:
            raise ResultError("the result id must be set")
        if not self.claim_id:
            raise ResultError("the claimID must be set")
        if self.status not in VALID_STATUSES:
            raise ResultError(f"invalid status: {self.status}")

    def has_logs(self) -> bool:
        """Report whether logs were persisted for the result."""
        return OUTPUT_INVOCATION_IMAGE_LOGS in self.output_metadata

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "claimId": self.claim_id,
            "created": _format_timestamp(self.created),
        }
        if self.message:
            data["message"] = self.message
        data["status"] = self.status
        if self.output_metadata:
            data["outputs"] = {name: dict(meta) for name, meta in self.output_metadata.items()}
        if self.custom is not None:
            data["custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Result:
        created = data.get("created")
        return cls(
            id=data.get("id", ""),
            claim_id=data.get("claimId", ""),
            created=_parse_timestamp(created) if created else None,
            message=data.get("message", ""),
            status=data.get("status", ""),
            output_metadata=OutputMetadata(
                {name: dict(meta) for name, meta in (data.get("outputs") or {}).items()}
            ),
            custom=data.get("custom"),
        )


def new_result(claim: Claim, status: str) -> Result:
    """Create a result for ``claim`` with a fresh id and the current time."""
    return Result(
        id=new_ulid(),
        claim_id=claim.id,
        claim=claim,
        created=datetime.now(timezone.utc).astimezone(),
        status=status,
        output_metadata=OutputMetadata(),
    )