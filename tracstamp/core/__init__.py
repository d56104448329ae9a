"""
TracStamp Core Data Model
"""

from tracstamp.core.certificate import (
    Certificate,
    TimeSample,
    TimeData,
    canonicalize_content,
    hash_content,
    make_preview,
    format_stamp_id,
    parse_stamp_sequence,
    parse_utc_time,
    format_utc_time,
    to_unix_ms,
)

__all__ = [
    "Certificate",
    "TimeSample",
    "TimeData",
    "canonicalize_content",
    "hash_content",
    "make_preview",
    "format_stamp_id",
    "parse_stamp_sequence",
    "parse_utc_time",
    "format_utc_time",
    "to_unix_ms",
]
