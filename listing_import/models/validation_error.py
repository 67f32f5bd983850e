from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""Row-addressable error model shared by every pipeline stage.

Validation, duplicate detection and batch commit all report problems with the
same shape so a single error report can list them side by side.
"""

__all__ = [
    "ValidationError",
    "ErrorType",
]


class ErrorType:
    """Error classifications (UPPER_SNAKE_CASE, stable for log consumers)."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ROW_LENGTH_MISMATCH = "ROW_LENGTH_MISMATCH"
    DUPLICATE_IN_FILE = "DUPLICATE_IN_FILE"
    DUPLICATE_CONFLICT = "DUPLICATE_CONFLICT"  # ambiguous identity match
    DUPLICATE_EXISTS = "DUPLICATE_EXISTS"
    LOOKUP_ERROR = "LOOKUP_ERROR"
    BATCH_COMMIT_ERROR = "BATCH_COMMIT_ERROR"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class ValidationError:
    """A single problem found on a single source row.

    Attributes:
        row: 1-based data row number in the original file (header excluded)
        field: column name the problem relates to ("row" for whole-row problems)
        value: offending value as read from the file (may be None)
        message: user facing description
        error_type: classification, see ErrorType
    """
    row: int
    field: str
    value: Any
    message: str
    error_type: str = ErrorType.VALIDATION_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "value": self.value,
            "message": self.message,
        }
