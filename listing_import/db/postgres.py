from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..models.identity import FALLBACK, IdentityKey, Normalizer, build_identity_key
from ..models.validated_record import ValidatedRecord
from ..schema.field_schema import FieldSchema
from .batch_insert import BatchInsertError, batch_insert, batch_update
from .repository import AmbiguousMatchError, BatchOutcome, ExistingRecord, RepositoryError

"""PostgreSQL record repository (psycopg2).

Every call borrows a connection from a ThreadedConnectionPool and runs in its
own transaction, so concurrent batches never share a transaction and a failed
batch rolls back only itself. Statement timeouts are enforced server side via
the ``statement_timeout`` connection option.

Fallback (name, address) lookups pre-filter candidates in SQL on the
alphanumeric, lower-cased first fallback column and then compare the configured
normalization in Python. Configured abbreviations can rewrite any token, so
with abbreviations the SQL filter only requires the fallback columns to be set.
"""

__all__ = [
    "DERIVED_COLUMNS",
    "PostgresRepository",
    "table_columns",
]

logger = logging.getLogger(__name__)

DERIVED_COLUMNS = ("slug", "status", "submittedby")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def table_columns(schema: FieldSchema) -> list[str]:
    return [*schema.field_names, *DERIVED_COLUMNS]


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Json(value)
    return value


class PostgresRepository:
    def __init__(
        self,
        pool: Any,
        schema: FieldSchema,
        normalizer: Normalizer | None = None,
        table: str = "businesses",
    ) -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"invalid table name: {table!r}")
        self.pool = pool
        self.schema = schema
        self.normalizer = normalizer or Normalizer()
        self.table = table
        self.columns = table_columns(schema)

    @classmethod
    def connect(
        cls,
        dsn: str,
        schema: FieldSchema,
        normalizer: Normalizer | None = None,
        table: str = "businesses",
        max_connections: int = 4,
        statement_timeout_seconds: float | None = None,
    ) -> PostgresRepository:
        kwargs: dict[str, Any] = {}
        if statement_timeout_seconds:
            kwargs["options"] = f"-c statement_timeout={int(statement_timeout_seconds * 1000)}"
        try:
            pool = ThreadedConnectionPool(1, max(1, max_connections), dsn, **kwargs)
        except psycopg2.Error as e:
            raise RepositoryError(f"could not connect: {e}") from e
        return cls(pool, schema, normalizer=normalizer, table=table)

    def close(self) -> None:
        self.pool.closeall()

    @contextmanager
    def _cursor(self, cursor_factory: Any = None) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            # psycopg2: "with conn" commits on success, rolls back on exception
            with conn:
                with conn.cursor(cursor_factory=cursor_factory) as cur:
                    yield cur
        finally:
            self.pool.putconn(conn)

    def _select(self) -> str:
        cols = ", ".join(f'"{c}"' for c in self.columns)
        return f"SELECT id, {cols} FROM {self.table}"

    def find_by_identity(self, key: IdentityKey) -> ExistingRecord | None:
        try:
            with self._cursor(RealDictCursor) as cur:
                if key.kind == FALLBACK:
                    cur.execute(*self._fallback_query(key))
                else:
                    cur.execute(
                        self._select() + f' WHERE "{self.schema.identity_field}" = %s',
                        (key.value[0],),
                    )
                rows = cur.fetchall()
        except psycopg2.Error as e:
            raise RepositoryError(f"lookup failed: {e}") from e

        if key.kind == FALLBACK:
            rows = [r for r in rows if self._fallback_key(r) == key]
        if len(rows) > 1:
            raise AmbiguousMatchError(key, [r["id"] for r in rows])
        if not rows:
            return None
        row = dict(rows[0])
        return ExistingRecord(id=row.pop("id"), values=row)

    def _fallback_query(self, key: IdentityKey) -> tuple[str, tuple[Any, ...]]:
        fields = self.schema.fallback_identity_fields
        if self.normalizer.rewrites_tokens:
            # Abbreviation rewrites are not expressible in SQL; narrow on presence only
            where = " AND ".join(f'"{f}" IS NOT NULL' for f in fields)
            return self._select() + f" WHERE {where}", ()
        column = fields[0]
        value = (key.raw or key.value)[key.fields.index(column)]
        return (
            self._select()
            + f" WHERE regexp_replace(lower(\"{column}\"), '[^0-9a-z]+', '', 'g') = %s",
            (_NON_ALNUM.sub("", value.lower()),),
        )

    def _fallback_key(self, row: dict[str, Any]) -> IdentityKey | None:
        values = {k: v for k, v in row.items() if k != self.schema.identity_field}
        return build_identity_key(
            values,
            self.schema.identity_field,
            self.schema.fallback_identity_fields,
            self.normalizer,
        )

    def _row_values(self, record: ValidatedRecord) -> list[Any]:
        return [_adapt(record.get(c)) for c in self.columns]

    def create_many(self, records: Sequence[ValidatedRecord]) -> BatchOutcome:
        try:
            with self._cursor() as cur:
                result = batch_insert(
                    cur, self.table, self.columns, [self._row_values(r) for r in records]
                )
        except (BatchInsertError, psycopg2.Error) as e:
            raise RepositoryError(str(e)) from e
        logger.debug("inserted %d rows into %s", result.inserted_rows, self.table)
        return BatchOutcome(created=result.inserted_rows)

    def update_many(self, records: Sequence[tuple[Any, ValidatedRecord]]) -> BatchOutcome:
        # Only columns present on the incoming row are overwritten
        updated = 0
        try:
            with self._cursor() as cur:
                for record_id, record in records:
                    columns = [c for c in self.columns if c in record.values]
                    updated += batch_update(
                        cur,
                        self.table,
                        "id",
                        columns,
                        [(record_id, [_adapt(record.get(c)) for c in columns])],
                    )
        except (BatchInsertError, psycopg2.Error) as e:
            raise RepositoryError(str(e)) from e
        logger.debug("updated %d rows in %s", updated, self.table)
        return BatchOutcome(updated=updated)
