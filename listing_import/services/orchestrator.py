from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, BinaryIO

from ..csvio.reader import CSVSource, ParseError, open_csv
from ..db.repository import RecordRepository
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig
from ..models.identity import Normalizer
from ..models.import_options import ImportOptions
from ..models.import_result import ImportResult, PreviewResult, ResultAccumulator, ValidationSummary
from ..models.session import SessionStage
from ..models.validated_record import ValidatedRecord
from ..schema.business import business_schema
from ..schema.field_schema import FieldSchema
from .committer import BatchCommitter
from .duplicates import DuplicateDetector
from .progress import ProgressTracker
from .transform import to_business_record
from .validator import ValidationStats, collect, validate_rows

"""Import orchestration.

ImportPipeline exposes the three stage operations used by a driving surface
(CLI, HTTP handler, UI):

- preview(file)          -> PreviewResult (first rows only, counts are partial)
- validate(file)         -> ValidationSummary (full file, schema checks only)
- commit(file, options)  -> ImportResult

Every stage opens the file from the beginning; nothing parsed in one stage is
reused by the next. Only ParseError escapes a stage; every row-level problem
is returned in the result.

ImportSession wraps a pipeline in the four-stage workflow
(upload -> preview -> validate/options -> complete) and refuses out-of-order
transitions.
"""

__all__ = [
    "InvalidTransitionError",
    "ImportPipeline",
    "ImportSession",
    "preview",
    "validate",
    "commit",
]

logger = logging.getLogger(__name__)

Source = bytes | bytearray | memoryview | Path | BinaryIO | CSVSource


class InvalidTransitionError(Exception):
    """Raised when a session operation is not allowed in the current stage."""


def _pluralize(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


class ImportPipeline:
    def __init__(
        self,
        config: ImportConfig | None = None,
        schema: FieldSchema | None = None,
        repository: RecordRepository | None = None,
        progress_factory: type[ProgressTracker] | None = ProgressTracker,
    ) -> None:
        self.config = config or ImportConfig()
        self.schema = schema or business_schema(self.config.placeid_required)
        self.repository = repository
        self.normalizer = Normalizer(self.config.normalization)
        self.progress_factory = progress_factory

    @property
    def settings(self):
        return self.config.settings

    def default_options(self) -> ImportOptions:
        return ImportOptions(batch_size=self.settings.batch_size)

    def open(self, source: Source, name: str | None = None) -> CSVSource:
        """Validate ``source`` as CSV. Raises ParseError."""
        if isinstance(source, CSVSource):
            return source
        return open_csv(
            source,
            encoding=self.settings.encoding,
            delimiter=self.settings.delimiter,
            name=name,
        )

    def _header_warnings(self, src: CSVSource) -> list[str]:
        warnings: list[str] = []
        present = set(src.headers)
        for spec in self.schema.fields:
            if spec.required and spec.name not in present and not present & set(spec.aliases):
                warnings.append(f"Required column '{spec.name}' not found in header.")
        known = self.schema.known_columns()
        unknown = [h for h in src.headers if h and h not in known]
        if unknown:
            warnings.append(f"Ignoring unknown columns: {', '.join(unknown)}.")
        if src.duplicate_headers:
            warnings.append(
                f"Duplicate columns {', '.join(src.duplicate_headers)}: first occurrence used."
            )
        return warnings

    @staticmethod
    def _row_warnings(stats: ValidationStats) -> list[str]:
        warnings: list[str] = []
        if stats.blank_rows:
            warnings.append(f"Skipped {_pluralize(stats.blank_rows, 'blank row')}.")
        if stats.malformed_rows:
            warnings.append(
                f"{_pluralize(stats.malformed_rows, 'row')} did not match the header column count."
            )
        return warnings

    # -- stage operations --------------------------------------------------

    def preview(self, source: Source, name: str | None = None) -> PreviewResult:
        src = self.open(source, name)
        preview_rows = self.settings.preview_rows
        sample: list[dict[str, Any]] = []
        total = 0
        for row in src.rows():
            total += 1
            if len(sample) < self.settings.sample_rows:
                sample.append(dict(row.values))
        stats = collect(
            validate_rows(src.rows(), self.schema, self.normalizer, limit=preview_rows),
            keep_records=False,
        )
        logger.info(
            "preview %s: rows=%d validated=%d errors=%d",
            src.name,
            total,
            stats.total_rows,
            len(stats.errors),
        )
        return PreviewResult(
            headers=list(src.headers),
            sample_rows=sample,
            total_row_count=total,
            validation_errors=stats.errors,
            validated_rows=stats.total_rows,
            partial=total > stats.total_rows,
            warnings=self._header_warnings(src),
        )

    def validate(self, source: Source, name: str | None = None) -> ValidationSummary:
        src = self.open(source, name)
        stats = collect(validate_rows(src.rows(), self.schema, self.normalizer), keep_records=False)
        message = (
            f"Validation completed. {stats.valid_rows} valid rows, "
            f"{len(stats.errors)} errors found."
        )
        logger.info("validate %s: %s", src.name, message)
        return ValidationSummary(
            success_count=stats.valid_rows,
            errors=stats.errors,
            total_rows=stats.total_rows,
            blank_rows=stats.blank_rows,
            warnings=self._header_warnings(src) + self._row_warnings(stats),
            message=message,
        )

    def commit(
        self,
        source: Source,
        options: ImportOptions | None = None,
        repository: RecordRepository | None = None,
        name: str | None = None,
        cancel_event: threading.Event | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> ImportResult:
        """Validate, classify and write every row of ``source``.

        Raises:
            ParseError: the file cannot be read; nothing is written
            ValueError: no repository configured
        """
        repository = repository or self.repository
        if repository is None:
            raise ValueError("commit requires a record repository")
        options = options or self.default_options()
        started = time.monotonic()

        src = self.open(source, name)
        stats = collect(validate_rows(src.rows(), self.schema, self.normalizer))
        accumulator = ResultAccumulator(total_rows=stats.total_rows, blank_rows=stats.blank_rows)
        for warning in self._header_warnings(src) + self._row_warnings(stats):
            accumulator.add_warning(warning)
        if stats.errors:
            accumulator.add_errors(stats.errors)
            accumulator.add_warning(
                f"Found {len(stats.errors)} validation errors. Processing valid rows only."
            )

        records = [
            to_business_record(r, self.settings.default_country_code) for r in stats.records
        ]
        classified: list[ValidatedRecord] = []
        with DuplicateDetector(
            repository,
            self.schema,
            normalizer=self.normalizer,
            timeout_seconds=self.settings.repository_timeout_seconds,
        ) as detector:
            for detection in detector.detect(records, options):
                if detection.record is not None:
                    classified.append(detection.record)
                elif detection.error is not None:
                    accumulator.add_errors([detection.error])

        committer = BatchCommitter(
            repository,
            max_workers=self.settings.workers,
            timeout_seconds=self.settings.repository_timeout_seconds,
        )
        committer.commit(
            classified,
            options,
            accumulator,
            cancel_event=cancel_event,
            progress_factory=self.progress_factory,
        )

        elapsed = time.monotonic() - started
        interim = accumulator.snapshot()
        message = (
            f"Import completed. {interim.created} created, {interim.updated} updated, "
            f"{interim.duplicates_skipped} duplicates skipped, {len(interim.errors)} errors."
        )
        result = accumulator.snapshot(message=message, elapsed_seconds=elapsed)
        if not result.reconciled:
            logger.warning(
                "row counts do not reconcile: total=%d accounted=%d",
                result.total_rows,
                result.success + result.failed_rows + result.blank_rows,
            )
        if error_log is not None and result.errors:
            error_log.extend(src.name, result.errors)
        logger.info("commit %s: %s", src.name, message)
        return result


class ImportSession:
    """Four-stage import workflow for a single user-initiated import.

    Stage operations are serialized by a lock, except the commit itself,
    which runs outside it so ``reset()`` can abandon a running commit from
    another thread. Batches already submitted still finish and are part of
    the result returned by ``commit()``.
    """

    def __init__(self, pipeline: ImportPipeline) -> None:
        self.pipeline = pipeline
        self._lock = threading.RLock()
        self._generation = 0
        self._committing = False
        self._clear()

    def _clear(self) -> None:
        self.stage = SessionStage.UPLOAD
        self.file_name: str | None = None
        self._source: CSVSource | None = None
        self.preview_result: PreviewResult | None = None
        self.validation: ValidationSummary | None = None
        self.options: ImportOptions | None = None
        self.result: ImportResult | None = None
        self._cancel = threading.Event()

    def _require(self, *stages: SessionStage, action: str) -> None:
        if self.stage not in stages:
            allowed = ", ".join(s.value for s in stages)
            raise InvalidTransitionError(
                f"cannot {action} in stage '{self.stage.value}' (allowed: {allowed})"
            )

    def select_file(self, source: Source, name: str | None = None) -> PreviewResult:
        """upload/preview -> preview. A new file replaces all state of the previous one."""
        with self._lock:
            self._require(SessionStage.UPLOAD, SessionStage.PREVIEW, action="select a file")
            self._clear()
            self._generation += 1
            try:
                src = self.pipeline.open(source, name)
                preview_result = self.pipeline.preview(src)
            except ParseError:
                self._clear()
                raise
            self._source = src
            self.file_name = src.name
            self.preview_result = preview_result
            self.stage = SessionStage.PREVIEW
            return preview_result

    def confirm(self) -> ValidationSummary:
        """preview -> validate: run full-file validation."""
        with self._lock:
            self._require(SessionStage.PREVIEW, action="validate")
            assert self._source is not None
            self.validation = self.pipeline.validate(self._source)
            self.stage = SessionStage.VALIDATE
            return self.validation

    def set_options(self, options: ImportOptions) -> ImportOptions:
        """validate/options -> options."""
        with self._lock:
            self._require(SessionStage.VALIDATE, SessionStage.OPTIONS, action="set options")
            self.options = options
            self.stage = SessionStage.OPTIONS
            return options

    def commit(self, options: ImportOptions | None = None) -> ImportResult:
        """validate/options -> complete."""
        with self._lock:
            self._require(SessionStage.VALIDATE, SessionStage.OPTIONS, action="commit")
            if self._committing:
                raise InvalidTransitionError("a commit is already running for this session")
            if options is not None:
                self.options = options
            opts = self.options or self.pipeline.default_options()
            source = self._source
            cancel = self._cancel
            generation = self._generation
            self._committing = True
        assert source is not None
        try:
            result = self.pipeline.commit(source, opts, cancel_event=cancel)
        finally:
            with self._lock:
                self._committing = False
        with self._lock:
            if generation == self._generation:
                self.options = opts
                self.result = result
                self.stage = SessionStage.COMPLETE
            else:
                logger.info("session was reset during commit; result returned to caller only")
        return result

    def reset(self) -> None:
        """Abandon the session from any stage and return to upload."""
        with self._lock:
            self._cancel.set()
            self._generation += 1
            self._clear()


_default_pipeline: ImportPipeline | None = None


def _pipeline() -> ImportPipeline:
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = ImportPipeline()
    return _default_pipeline


def preview(file_bytes: Source, pipeline: ImportPipeline | None = None) -> PreviewResult:
    return (pipeline or _pipeline()).preview(file_bytes)


def validate(file_bytes: Source, pipeline: ImportPipeline | None = None) -> ValidationSummary:
    return (pipeline or _pipeline()).validate(file_bytes)


def commit(
    file_bytes: Source,
    options: ImportOptions,
    repository: RecordRepository,
    pipeline: ImportPipeline | None = None,
) -> ImportResult:
    return (pipeline or _pipeline()).commit(file_bytes, options, repository=repository)
