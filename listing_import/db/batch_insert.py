from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2.extras import execute_batch, execute_values

"""Batched INSERT / UPDATE helpers on a psycopg2 cursor.

INSERT uses psycopg2.extras.execute_values (one multi-row statement per page);
UPDATE uses execute_batch keyed on a single column. Both wrap driver errors in
BatchInsertError and report per-call timing through an optional callback.
Table and column names are expected to be trusted identifiers.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
    "batch_update",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing data for a single batch statement."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def _quote(column: str) -> str:
    return '"' + column.replace('"', '""') + '"'


def _timed(
    call: Callable[[], None],
    batch_size: int,
    metrics_callback: Callable[[BatchMetrics], None] | None,
) -> None:
    start_time = time.time()
    try:
        call()
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=batch_size,
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: bool = False,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform a batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table name
    columns: insert columns, in the order of each row's values
    rows: row value sequences
    returning: append ``RETURNING id`` and fetch the generated ids
    page_size: execute_values page size
    metrics_callback: receives BatchMetrics after the statement ran.
        Not invoked when ``rows`` is empty (nothing is executed).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(_quote(c) for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if returning:
        sql += " RETURNING id"

    def run() -> None:
        execute_values(cursor, sql, rows_list, page_size=page_size)

    _timed(run, len(rows_list), metrics_callback)

    returned = None
    if returning:
        try:
            returned = cursor.fetchall()
        except Exception as e:
            raise BatchInsertError(f"failed fetching RETURNING rows: {e}") from e

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)


def batch_update(
    cursor: Any,
    table: str,
    key_column: str,
    columns: Sequence[str],
    rows: Iterable[tuple[Any, Sequence[Any]]],
    page_size: int = 100,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    """UPDATE ``columns`` of each row identified by ``key_column``.

    ``rows`` yields ``(key, values)`` pairs, values ordered like ``columns``.
    Returns the number of rows submitted.
    """
    rows_list = [(*values, key) for key, values in rows]
    if not rows_list:
        return 0
    assignments = ", ".join(f"{_quote(c)} = %s" for c in columns)
    sql = f"UPDATE {table} SET {assignments} WHERE {_quote(key_column)} = %s"

    def run() -> None:
        execute_batch(cursor, sql, rows_list, page_size=page_size)

    _timed(run, len(rows_list), metrics_callback)
    return len(rows_list)
