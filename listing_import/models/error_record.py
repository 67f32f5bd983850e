from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from .validation_error import ValidationError

"""ErrorRecord model for the JSON Lines error log.

Each ValidationError of an import is logged as one ErrorRecord line. The key
set is fixed (timestamp, file, row, field, error_type, message) so the log
can be consumed by tooling without schema drift. row=-1 marks file-level
errors where no data row applies (e.g. a ParseError).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: CSV file name being imported
        row: Data row number (1-based). -1 for file-level errors
        field: Column the error relates to
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable description
    """
    timestamp: str
    file: str
    row: int
    field: str
    error_type: str
    message: str

    @staticmethod
    def create(file: str, row: int, field: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            field=field,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_validation_error(file: str, error: ValidationError) -> ErrorRecord:
        return ErrorRecord.create(
            file=file,
            row=error.row,
            field=error.field,
            error_type=error.error_type,
            message=error.message,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
