from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from .validation_error import ValidationError

"""Import result models.

ImportResult is the aggregate, reconcilable outcome of a commit:

    created + updated + duplicates_skipped + failed_rows + blank_rows == total_rows

failed_rows counts distinct rows that carry at least one error; ``errors`` lists
every error of those rows (a row may have several). When each failing row has
a single error, ``len(errors) == failed_rows``.

ResultAccumulator collects totals while batches complete. Totals only ever
grow, so a caller polling ``snapshot()`` mid-commit sees monotonic progress.
"""

__all__ = [
    "ImportResult",
    "ValidationSummary",
    "PreviewResult",
    "ResultAccumulator",
]


@dataclass(frozen=True)
class ImportResult:
    """Aggregated outcome of a commit (or a snapshot of one in progress)."""
    success: int  # created + updated + duplicates_skipped
    created: int
    updated: int
    duplicates_skipped: int
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    message: str = ""
    total_rows: int = 0  # Data rows in the file (header excluded)
    blank_rows: int = 0  # Blank rows skipped silently
    failed_rows: int = 0  # Distinct rows with at least one error
    elapsed_seconds: float = 0.0

    @property
    def reconciled(self) -> bool:
        accounted = (
            self.created + self.updated + self.duplicates_skipped
            + self.failed_rows + self.blank_rows
        )
        return accounted == self.total_rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "duplicatesSkipped": self.duplicates_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "message": self.message,
        }


@dataclass(frozen=True)
class ValidationSummary:
    """Result of the full-file validate stage."""
    success_count: int
    errors: list[ValidationError]
    total_rows: int = 0
    blank_rows: int = 0
    warnings: list[str] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "successCount": self.success_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "message": self.message,
        }


@dataclass(frozen=True)
class PreviewResult:
    """Result of the preview stage.

    Counts are partial: only the first ``validated_rows`` rows are validated,
    so ``partial`` is always True unless the whole file fits the preview window.
    """
    headers: list[str]
    sample_rows: list[dict[str, Any]]
    total_row_count: int
    validation_errors: list[ValidationError]
    validated_rows: int = 0
    partial: bool = True
    warnings: list[str] = field(default_factory=list)  # Header-level findings

    def to_dict(self) -> dict[str, Any]:
        return {
            "headers": list(self.headers),
            "sampleRows": [dict(r) for r in self.sample_rows],
            "totalRowCount": self.total_row_count,
            "validationErrors": [e.to_dict() for e in self.validation_errors],
            "partial": self.partial,
            "warnings": list(self.warnings),
        }


class ResultAccumulator:
    """Thread-safe running totals for a commit.

    The committer folds every batch outcome through ``add_*``; a lock guards
    the counters so no reader observes a half-applied batch.
    """

    def __init__(self, total_rows: int = 0, blank_rows: int = 0) -> None:
        self._lock = threading.Lock()
        self.total_rows = total_rows
        self.blank_rows = blank_rows
        self.created = 0
        self.updated = 0
        self.duplicates_skipped = 0
        self._errors: list[ValidationError] = []
        self._warnings: list[str] = []
        self._failed_rows: set[int] = set()

    def add_created(self, count: int) -> None:
        with self._lock:
            self.created += count

    def add_updated(self, count: int) -> None:
        with self._lock:
            self.updated += count

    def add_skipped(self, count: int = 1) -> None:
        with self._lock:
            self.duplicates_skipped += count

    def add_errors(self, errors: list[ValidationError]) -> None:
        with self._lock:
            self._errors.extend(errors)
            self._failed_rows.update(e.row for e in errors)

    def add_warning(self, message: str) -> None:
        with self._lock:
            self._warnings.append(message)

    @property
    def success(self) -> int:
        return self.created + self.updated + self.duplicates_skipped

    @property
    def error_count(self) -> int:
        with self._lock:
            return len(self._errors)

    @property
    def failed_rows(self) -> int:
        with self._lock:
            return len(self._failed_rows)

    def snapshot(self, message: str = "", elapsed_seconds: float = 0.0) -> ImportResult:
        """Freeze the current totals into an ImportResult.

        Errors are ordered by source row; the sort is stable so errors of the
        same row keep the order they were reported in.
        """
        with self._lock:
            errors = sorted(self._errors, key=lambda e: e.row)
            return ImportResult(
                success=self.created + self.updated + self.duplicates_skipped,
                created=self.created,
                updated=self.updated,
                duplicates_skipped=self.duplicates_skipped,
                errors=errors,
                warnings=list(self._warnings),
                message=message,
                total_rows=self.total_rows,
                blank_rows=self.blank_rows,
                failed_rows=len(self._failed_rows),
                elapsed_seconds=elapsed_seconds,
            )
