"""Error taxonomy shared by every scheduler component."""
from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes propagated unchanged to callers, logs and analytics."""

    # not found
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PATH_NOT_FOUND = "PATH_NOT_FOUND"
    FACT_NOT_FOUND = "FACT_NOT_FOUND"
    UNIT_NOT_FOUND = "UNIT_NOT_FOUND"
    NO_MASTERY_DATA = "NO_MASTERY_DATA"
    NO_TRIPLE_HELIX = "NO_TRIPLE_HELIX"

    # validation
    INVALID_PERFORMANCE_DATA = "INVALID_PERFORMANCE_DATA"
    INVALID_DIFFICULTY = "INVALID_DIFFICULTY"
    INVALID_LEVEL = "INVALID_LEVEL"
    INVALID_POSITION_RANGE = "INVALID_POSITION_RANGE"

    # state conflicts
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    POSITION_OCCUPIED = "POSITION_OCCUPIED"
    NO_UNITS_AVAILABLE = "NO_UNITS_AVAILABLE"
    ROTATION_FAILED = "ROTATION_FAILED"
    REPOSITIONING_FAILED = "REPOSITIONING_FAILED"

    # concurrency
    CONFLICT = "CONFLICT"


NOT_FOUND_CODES = frozenset(
    {
        ErrorCode.USER_NOT_FOUND,
        ErrorCode.PATH_NOT_FOUND,
        ErrorCode.FACT_NOT_FOUND,
        ErrorCode.UNIT_NOT_FOUND,
        ErrorCode.NO_MASTERY_DATA,
        ErrorCode.NO_TRIPLE_HELIX,
    }
)
VALIDATION_CODES = frozenset(
    {
        ErrorCode.INVALID_PERFORMANCE_DATA,
        ErrorCode.INVALID_DIFFICULTY,
        ErrorCode.INVALID_LEVEL,
        ErrorCode.INVALID_POSITION_RANGE,
    }
)


class SchedulerError(ValueError):
    """Raised by scheduler components; ``code`` identifies the failure."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


__all__ = ["ErrorCode", "NOT_FOUND_CODES", "SchedulerError", "VALIDATION_CODES"]
