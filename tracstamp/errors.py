"""
TracStamp Error Handling

All error codes and exception classes.
"""

from enum import IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Service error codes."""

    # 1xxx - General errors
    UNKNOWN_ERROR = 1000
    INVALID_CONFIG = 1001

    # 2xxx - Time source errors
    TIME_PROVIDER_FAILED = 2001

    # 3xxx - Ledger errors
    PERSISTENCE_FAILED = 3001

    # 4xxx - Channel protocol errors
    MISSING_FIELD = 4001

    # 5xxx - Transport errors
    MALFORMED_FRAME = 5001


class TracStampError(Exception):
    """Base exception for all TracStamp errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


class ConfigError(TracStampError):
    def __init__(self, problems: list):
        super().__init__(
            ErrorCode.INVALID_CONFIG,
            "Invalid configuration: " + "; ".join(problems),
            {"problems": list(problems)}
        )


class TimeProviderError(TracStampError):
    def __init__(self, provider: str, reason: str):
        super().__init__(
            ErrorCode.TIME_PROVIDER_FAILED,
            f"Time provider {provider} unavailable: {reason}",
            {"provider": provider}
        )


class PersistenceError(TracStampError):
    def __init__(self, path: str, reason: str):
        super().__init__(
            ErrorCode.PERSISTENCE_FAILED,
            f"Cannot persist ledger to {path}: {reason}",
            {"path": path}
        )


class MissingFieldError(TracStampError):
    """A channel request lacks a required field."""

    def __init__(self, field: str, request_type: str, message: str):
        self.field = field
        self.request_type = request_type
        super().__init__(
            ErrorCode.MISSING_FIELD,
            message,
            {"field": field, "request": request_type}
        )


class MalformedFrameError(TracStampError):
    def __init__(self, reason: str):
        super().__init__(ErrorCode.MALFORMED_FRAME, f"Malformed frame: {reason}")
