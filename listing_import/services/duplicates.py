from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass

from ..db.repository import (
    AmbiguousMatchError,
    ExistingRecord,
    RecordRepository,
    RepositoryError,
    RepositoryTimeoutError,
)
from ..models.identity import IdentityKey, Normalizer, build_identity_key
from ..models.import_options import ImportOptions
from ..models.validated_record import CommitAction, DuplicateStatus, ValidatedRecord
from ..models.validation_error import ErrorType, ValidationError
from ..schema.field_schema import FieldSchema

"""Duplicate detection against the record store.

Each validated record is looked up by identity key and tagged:

- no match                          -> NEW / CREATE
- match, skip_duplicates            -> DUPLICATE / SKIP
- match, update_duplicates          -> CONFLICT / UPDATE (carries the stored id)
- match, neither option             -> row error (record already exists)
- fallback key matches several rows -> row error (ambiguous duplicate match)

The detector only reads from the repository; every write goes through the
batch committer.
"""

__all__ = [
    "Detection",
    "DuplicateDetector",
    "AMBIGUOUS_MESSAGE",
]

logger = logging.getLogger(__name__)

AMBIGUOUS_MESSAGE = "ambiguous duplicate match"


@dataclass(frozen=True)
class Detection:
    """Tagged result: a classified record, or the error that excludes it."""
    record: ValidatedRecord | None = None
    error: ValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


class DuplicateDetector:
    def __init__(
        self,
        repository: RecordRepository,
        schema: FieldSchema,
        normalizer: Normalizer | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.repository = repository
        self.schema = schema
        self.normalizer = normalizer or Normalizer()
        self.timeout_seconds = timeout_seconds
        self._executor = self._new_executor()

    def key_for(self, record: ValidatedRecord) -> IdentityKey | None:
        return build_identity_key(
            record.values,
            self.schema.identity_field,
            self.schema.fallback_identity_fields,
            self.normalizer,
        )

    @staticmethod
    def _new_executor() -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="listing-lookup")

    def _lookup(self, key: IdentityKey) -> ExistingRecord | None:
        future = self._executor.submit(self.repository.find_by_identity, key)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as e:
            # The stuck lookup keeps its thread; later lookups get a fresh one
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = self._new_executor()
            raise RepositoryTimeoutError(
                f"lookup timed out after {self.timeout_seconds:g}s"
            ) from e

    def _classify(
        self,
        record: ValidatedRecord,
        options: ImportOptions,
    ) -> Detection:
        key = self.key_for(record)
        if key is None:
            # Nothing to match on; the row can only be new
            return Detection(record=record.classify(DuplicateStatus.NEW, CommitAction.CREATE))
        try:
            existing = self._lookup(key)
        except AmbiguousMatchError as e:
            logger.debug("row %d: %s", record.row_number, e)
            return Detection(error=self._error(record, key, AMBIGUOUS_MESSAGE, ErrorType.DUPLICATE_CONFLICT))
        except RepositoryError as e:
            return Detection(
                error=self._error(
                    record, key, f"duplicate lookup failed: {e}", ErrorType.LOOKUP_ERROR
                )
            )
        except Exception as e:
            logger.exception("row %d: unexpected lookup failure", record.row_number)
            return Detection(
                error=self._error(
                    record, key, f"duplicate lookup failed: {e}", ErrorType.LOOKUP_ERROR
                )
            )

        if existing is None:
            return Detection(record=record.classify(DuplicateStatus.NEW, CommitAction.CREATE))
        if options.skip_duplicates:
            return Detection(record=record.classify(DuplicateStatus.DUPLICATE, CommitAction.SKIP, existing.id))
        if options.update_duplicates:
            return Detection(record=record.classify(DuplicateStatus.CONFLICT, CommitAction.UPDATE, existing.id))
        return Detection(
            error=self._error(
                record,
                key,
                f"record with this {key.describe()} already exists",
                ErrorType.DUPLICATE_EXISTS,
            )
        )

    @staticmethod
    def _error(
        record: ValidatedRecord, key: IdentityKey, message: str, error_type: str
    ) -> ValidationError:
        value = key.raw[0] if len(key.raw) == 1 else ", ".join(key.raw)
        return ValidationError(
            row=record.row_number,
            field=key.label,
            value=value,
            message=message,
            error_type=error_type,
        )

    def detect(
        self,
        records: Iterable[ValidatedRecord],
        options: ImportOptions,
    ) -> Iterator[Detection]:
        """Classify ``records`` in order, one repository lookup per record."""
        for record in records:
            yield self._classify(record, options)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> DuplicateDetector:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
