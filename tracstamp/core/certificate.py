"""
TracStamp Certificate

The certificate record, its time samples, and the helpers that derive a
certificate's fields from raw content.
"""

from __future__ import annotations
import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from tracstamp.constants import (
    STAMP_ID_PREFIX,
    STAMP_ID_DIGITS,
    CONTENT_PREVIEW_LENGTH,
    CONTENT_PREVIEW_SUFFIX,
)

CERTIFICATE_TYPE = "stamp_certificate"

# Fractional seconds followed by an optional UTC designator or offset
_FRACTION_RE = re.compile(r"\.(\d+)(?=(Z|z|[+-]\d{2}:?\d{2})?$)")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Content
# =============================================================================

def canonicalize_content(content: Any) -> str:
    """
    Canonical string form of submitted content.

    Strings pass through untouched. Everything else is serialized as JSON
    with sorted keys and no whitespace so equal structures hash equally.
    """
    if isinstance(content, str):
        return content
    return json.dumps(content, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_content(content: Any) -> str:
    """SHA-256 hex digest of the canonical content string."""
    canonical = canonicalize_content(content)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def make_preview(canonical: str) -> str:
    """First 100 characters, with an ellipsis marker when truncated."""
    if len(canonical) > CONTENT_PREVIEW_LENGTH:
        return canonical[:CONTENT_PREVIEW_LENGTH] + CONTENT_PREVIEW_SUFFIX
    return canonical


# =============================================================================
# Stamp identifiers
# =============================================================================

def format_stamp_id(sequence: int) -> str:
    """Render sequence number 1 as TS-00001."""
    return f"{STAMP_ID_PREFIX}{sequence:0{STAMP_ID_DIGITS}d}"


def parse_stamp_sequence(stamp_id: str) -> Optional[int]:
    """Sequence number of a stamp id, or None if it is not one of ours."""
    if not isinstance(stamp_id, str) or not stamp_id.startswith(STAMP_ID_PREFIX):
        return None
    digits = stamp_id[len(STAMP_ID_PREFIX):]
    if not digits.isdigit():
        return None
    return int(digits)


# =============================================================================
# UTC time
# =============================================================================

def parse_utc_time(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a Z designator or numeric offset and any number of fractional
    digits (truncated to microseconds). Naive values are taken as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Not a timestamp: {value!r}")

    text = value.strip()
    match = _FRACTION_RE.search(text)
    if match:
        micros = match.group(1)[:6].ljust(6, "0")
        text = text[:match.start()] + "." + micros + text[match.end(1):]

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_unix_ms(value: str) -> int:
    """Milliseconds since epoch for an ISO-8601 timestamp."""
    delta = parse_utc_time(value) - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def format_utc_time(moment: datetime) -> str:
    """Render as 2024-01-01T00:00:00.000Z."""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def has_utc_designator(value: str) -> bool:
    """True if the timestamp carries Z or a numeric offset."""
    return bool(re.search(r"(Z|z|[+-]\d{2}:?\d{2})$", value.strip()))


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class TimeSample:
    """One provider's answer."""
    name: str
    time: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "time": self.time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeSample":
        return cls(name=str(data["name"]), time=str(data["time"]))


@dataclass(frozen=True)
class TimeData:
    """Aggregated time: the primary value and every sample collected."""
    utc_time: str
    unix_ts: int
    time_sources: Tuple[TimeSample, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Certificate:
    """
    Timestamp certificate.

    Asserts that content with the given hash existed no later than
    ``utc_time``. Immutable once issued.
    """
    stamp_id: str
    hash: str
    content_preview: str
    utc_time: str
    unix_ts: int
    time_sources: Tuple[TimeSample, ...]
    stamped_by: str

    @property
    def sequence(self) -> Optional[int]:
        """Numeric part of the stamp id."""
        return parse_stamp_sequence(self.stamp_id)

    def to_dict(self) -> Dict[str, Any]:
        """Wire and ledger form."""
        return {
            "type": CERTIFICATE_TYPE,
            "stamp_id": self.stamp_id,
            "hash": self.hash,
            "content_preview": self.content_preview,
            "utc_time": self.utc_time,
            "unix_ts": self.unix_ts,
            "time_sources": [s.to_dict() for s in self.time_sources],
            "stamped_by": self.stamped_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Certificate":
        """
        Rebuild a certificate from its ledger form.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"Certificate record must be an object, got {type(data).__name__}")

        sources: List[TimeSample] = [
            TimeSample.from_dict(s) for s in data.get("time_sources", [])
        ]
        return cls(
            stamp_id=str(data["stamp_id"]),
            hash=str(data["hash"]),
            content_preview=str(data.get("content_preview", "")),
            utc_time=str(data["utc_time"]),
            unix_ts=int(data["unix_ts"]),
            time_sources=tuple(sources),
            stamped_by=str(data.get("stamped_by", "")),
        )
