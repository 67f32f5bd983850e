from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from ..db.repository import RecordRepository
from ..models.import_options import ImportOptions
from ..models.import_result import ResultAccumulator
from ..models.validated_record import CommitAction, ValidatedRecord
from ..models.validation_error import ErrorType, ValidationError
from .progress import ProgressTracker

"""Batch committer: the only code path that writes to the record store.

Accepted records (CREATE / UPDATE) are cut into fixed-size batches in source
order, whatever their classification. Each batch is submitted independently,
optionally on a bounded worker pool. A failing batch turns into one error per
affected row and never stops the batches after it.

Aggregation has a single writer: worker threads only return BatchResult
values, the calling thread folds them into the ResultAccumulator.

Timeouts: a batch running longer than ``timeout_seconds`` is failed row by
row. Its thread cannot be interrupted, so if it later completes with writes a
warning records what was written.

Cancellation: once ``cancel_event`` is set no further batch is submitted; the
unsubmitted rows are reported as CANCELLED and in-flight batches are allowed
to finish and are folded in as usual.
"""

__all__ = [
    "Batch",
    "BatchResult",
    "BatchCommitter",
    "partition",
]

logger = logging.getLogger(__name__)

ERROR_FIELD = "general"
DEFAULT_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class Batch:
    index: int  # 1-based batch number
    records: tuple[ValidatedRecord, ...]

    @property
    def rows(self) -> str:
        return f"{self.records[0].row_number}-{self.records[-1].row_number}"


@dataclass
class BatchResult:
    batch: Batch
    created: int = 0
    updated: int = 0
    errors: list[ValidationError] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return bool(self.errors)


def partition(records: Iterable[ValidatedRecord], batch_size: int) -> Iterator[Batch]:
    """Yield batches of ``batch_size`` records, preserving source order."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    chunk: list[ValidatedRecord] = []
    index = 0
    for record in records:
        chunk.append(record)
        if len(chunk) == batch_size:
            index += 1
            yield Batch(index, tuple(chunk))
            chunk = []
    if chunk:
        yield Batch(index + 1, tuple(chunk))


def _row_errors(
    records: Sequence[ValidatedRecord], message: str, error_type: str
) -> list[ValidationError]:
    return [
        ValidationError(
            row=r.row_number,
            field=ERROR_FIELD,
            value=None,
            message=message,
            error_type=error_type,
        )
        for r in records
    ]


class BatchCommitter:
    def __init__(
        self,
        repository: RecordRepository,
        *,
        max_workers: int = 1,
        timeout_seconds: float | None = None,
        poll_interval: float = DEFAULT_POLL_SECONDS,
    ) -> None:
        self.repository = repository
        self.max_workers = max(1, max_workers)
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval
        self._started: dict[int, float] = {}
        self._started_lock = threading.Lock()

    # -- worker side -------------------------------------------------------

    def _run(self, batch: Batch) -> BatchResult:
        start = time.monotonic()
        with self._started_lock:
            self._started[batch.index] = start
        result = BatchResult(batch=batch)
        creates = [r for r in batch.records if r.action is CommitAction.CREATE]
        updates = [r for r in batch.records if r.action is CommitAction.UPDATE]

        if creates:
            try:
                outcome = self.repository.create_many(creates)
                result.created += outcome.created
                result.errors += self._failures(creates, outcome.failures)
            except Exception as e:
                logger.warning("batch %d (rows %s) create failed: %s", batch.index, batch.rows, e)
                result.errors += _row_errors(
                    creates, f"batch {batch.index} failed: {e}", ErrorType.BATCH_COMMIT_ERROR
                )
        if updates:
            try:
                outcome = self.repository.update_many([(r.existing_id, r) for r in updates])
                result.updated += outcome.updated
                result.errors += self._failures(updates, outcome.failures)
            except Exception as e:
                logger.warning("batch %d (rows %s) update failed: %s", batch.index, batch.rows, e)
                result.errors += _row_errors(
                    updates, f"batch {batch.index} failed: {e}", ErrorType.BATCH_COMMIT_ERROR
                )
        result.elapsed_seconds = time.monotonic() - start
        return result

    @staticmethod
    def _failures(records: Sequence[ValidatedRecord], failures: dict[int, str]) -> list[ValidationError]:
        return [
            ValidationError(
                row=r.row_number,
                field=ERROR_FIELD,
                value=None,
                message=failures[r.row_number],
                error_type=ErrorType.BATCH_COMMIT_ERROR,
            )
            for r in records
            if r.row_number in failures
        ]

    # -- aggregation side (calling thread only) ----------------------------

    def _fold(
        self,
        result: BatchResult,
        accumulator: ResultAccumulator,
        progress: ProgressTracker | None,
    ) -> None:
        accumulator.add_created(result.created)
        accumulator.add_updated(result.updated)
        if result.errors:
            accumulator.add_errors(result.errors)
        logger.debug(
            "batch %d rows=%s created=%d updated=%d errors=%d elapsed=%.3fs",
            result.batch.index,
            result.batch.rows,
            result.created,
            result.updated,
            len(result.errors),
            result.elapsed_seconds,
        )
        if progress is not None:
            progress.finish_batch(success=not result.failed)
            progress.set_postfix(
                created=accumulator.created,
                updated=accumulator.updated,
                errors=accumulator.error_count,
            )

    def _fold_future(
        self,
        future: Future[BatchResult],
        batch: Batch,
        accumulator: ResultAccumulator,
        progress: ProgressTracker | None,
    ) -> None:
        try:
            result = future.result()
        except Exception as e:
            logger.exception("batch %d crashed", batch.index)
            result = BatchResult(
                batch=batch,
                errors=_row_errors(
                    batch.records, f"batch {batch.index} failed: {e}", ErrorType.BATCH_COMMIT_ERROR
                ),
            )
        self._fold(result, accumulator, progress)

    def _fold_timeout(
        self, batch: Batch, accumulator: ResultAccumulator, progress: ProgressTracker | None
    ) -> None:
        logger.warning(
            "batch %d (rows %s) timed out after %ss", batch.index, batch.rows, self.timeout_seconds
        )
        result = BatchResult(
            batch=batch,
            errors=_row_errors(
                batch.records,
                f"batch {batch.index} timed out after {self.timeout_seconds:g}s",
                ErrorType.BATCH_COMMIT_ERROR,
            ),
        )
        self._fold(result, accumulator, progress)

    def _fold_cancelled(
        self, batch: Batch, accumulator: ResultAccumulator, progress: ProgressTracker | None
    ) -> None:
        result = BatchResult(
            batch=batch,
            errors=_row_errors(
                batch.records, "import cancelled before this batch was submitted", ErrorType.CANCELLED
            ),
        )
        self._fold(result, accumulator, progress)

    @staticmethod
    def _drain_stragglers(
        stragglers: dict[Future[BatchResult], Batch], accumulator: ResultAccumulator
    ) -> None:
        for future in [f for f in stragglers if f.done()]:
            batch = stragglers.pop(future)
            try:
                late = future.result()
            except Exception as e:
                logger.warning("timed-out batch %d failed later: %s", batch.index, e)
                continue
            if late.created or late.updated:
                accumulator.add_warning(
                    f"Batch {batch.index} (rows {batch.rows}) completed after timing out: "
                    f"{late.created} created, {late.updated} updated were written."
                )

    def commit(
        self,
        records: Iterable[ValidatedRecord],
        options: ImportOptions,
        accumulator: ResultAccumulator,
        cancel_event: threading.Event | None = None,
        progress_factory: type[ProgressTracker] | None = ProgressTracker,
    ) -> ResultAccumulator:
        """Commit classified ``records`` and fold their outcomes into ``accumulator``.

        SKIP records count as skipped duplicates and are never sent to the
        repository. Returns the same accumulator for chaining.
        """
        accepted: list[ValidatedRecord] = []
        for record in records:
            if record.action is CommitAction.SKIP:
                accumulator.add_skipped()
            elif record.action in (CommitAction.CREATE, CommitAction.UPDATE):
                accepted.append(record)
            else:
                raise ValueError(f"row {record.row_number} has not been classified")

        batches = deque(partition(accepted, options.batch_size))
        if not batches:
            return accumulator
        workers = min(self.max_workers, len(batches))
        logger.info(
            "committing %d rows in %d batches (batch_size=%d workers=%d)",
            len(accepted),
            len(batches),
            options.batch_size,
            workers,
        )

        progress = progress_factory(len(batches)) if progress_factory is not None else None
        in_flight: dict[Future[BatchResult], Batch] = {}
        stragglers: dict[Future[BatchResult], Batch] = {}
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="listing-commit")
        try:
            while batches or in_flight:
                if cancel_event is not None and cancel_event.is_set() and batches:
                    logger.warning("import cancelled; %d batches not submitted", len(batches))
                    while batches:
                        self._fold_cancelled(batches.popleft(), accumulator, progress)
                    continue

                busy = len(in_flight) + sum(1 for f in stragglers if not f.done())
                while batches and busy < workers:
                    batch = batches.popleft()
                    in_flight[executor.submit(self._run, batch)] = batch
                    busy += 1

                if not in_flight:
                    # Every worker is held by a timed-out batch
                    wait(list(stragglers), return_when=FIRST_COMPLETED)
                    self._drain_stragglers(stragglers, accumulator)
                    continue

                poll = self.poll_interval if self.timeout_seconds is not None or cancel_event else None
                done, _ = wait(list(in_flight), timeout=poll, return_when=FIRST_COMPLETED)
                for future in done:
                    self._fold_future(future, in_flight.pop(future), accumulator, progress)

                if self.timeout_seconds is not None:
                    now = time.monotonic()
                    for future, batch in list(in_flight.items()):
                        with self._started_lock:
                            started = self._started.get(batch.index)
                        if started is not None and now - started > self.timeout_seconds:
                            del in_flight[future]
                            stragglers[future] = batch
                            self._fold_timeout(batch, accumulator, progress)
                self._drain_stragglers(stragglers, accumulator)
        finally:
            executor.shutdown(wait=True)
            if progress is not None:
                progress.close()
        self._drain_stragglers(stragglers, accumulator)
        with self._started_lock:
            self._started.clear()
        return accumulator
