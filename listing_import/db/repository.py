from __future__ import annotations

import itertools
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..models.identity import PRIMARY, IdentityKey, Normalizer, build_identity_key
from ..models.validated_record import ValidatedRecord

"""Record repository contract and an in-memory implementation.

The importer only needs three operations from the record store:

- find_by_identity(key) -> ExistingRecord | None
- create_many(records) -> BatchOutcome
- update_many([(id, record), ...]) -> BatchOutcome

find_by_identity raises AmbiguousMatchError when a fallback key matches more
than one stored record. Any other failure is a RepositoryError.

InMemoryRepository backs tests and the CLI mock mode (no database).
"""

__all__ = [
    "RepositoryError",
    "RepositoryTimeoutError",
    "AmbiguousMatchError",
    "ExistingRecord",
    "BatchOutcome",
    "RecordRepository",
    "InMemoryRepository",
]


class RepositoryError(Exception):
    """Raised by a repository when an operation fails."""


class RepositoryTimeoutError(RepositoryError):
    """Raised when a repository call exceeds its time budget."""


class AmbiguousMatchError(RepositoryError):
    """More than one stored record matches an identity key."""

    def __init__(self, key: IdentityKey, matches: Sequence[Any]) -> None:
        super().__init__(f"{len(matches)} records match {key.describe()}")
        self.key = key
        self.matches = list(matches)


@dataclass(frozen=True)
class ExistingRecord:
    id: Any
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchOutcome:
    created: int = 0
    updated: int = 0
    # Per-record failures reported by the store (row number -> message)
    failures: dict[int, str] = field(default_factory=dict)


class RecordRepository(Protocol):
    def find_by_identity(self, key: IdentityKey) -> ExistingRecord | None: ...

    def create_many(self, records: Sequence[ValidatedRecord]) -> BatchOutcome: ...

    def update_many(self, records: Sequence[tuple[Any, ValidatedRecord]]) -> BatchOutcome: ...


class InMemoryRepository:
    """Dictionary-backed repository.

    Writes are atomic per call: a create_many that would store a second record
    with an existing identifier fails as a whole and stores nothing.
    """

    def __init__(
        self,
        identity_field: str = "placeid",
        fallback_fields: Sequence[str] = ("title", "address"),
        normalizer: Normalizer | None = None,
    ) -> None:
        self.identity_field = identity_field
        self.fallback_fields = tuple(fallback_fields)
        self.normalizer = normalizer or Normalizer()
        self._records: dict[int, dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.create_calls = 0
        self.update_calls = 0

    def __len__(self) -> int:
        return len(self._records)

    def add(self, values: dict[str, Any]) -> int:
        """Store ``values`` directly (fixtures, seeding)."""
        with self._lock:
            record_id = next(self._ids)
            self._records[record_id] = dict(values)
            return record_id

    def get(self, record_id: int) -> dict[str, Any] | None:
        with self._lock:
            found = self._records.get(record_id)
            return dict(found) if found is not None else None

    def all(self) -> list[ExistingRecord]:
        with self._lock:
            return [ExistingRecord(i, dict(v)) for i, v in self._records.items()]

    def _key_for(self, values: dict[str, Any], kind: str) -> IdentityKey | None:
        if kind == PRIMARY:
            return build_identity_key(values, self.identity_field, (), self.normalizer)
        return build_identity_key(
            {k: v for k, v in values.items() if k != self.identity_field},
            self.identity_field,
            self.fallback_fields,
            self.normalizer,
        )

    def find_by_identity(self, key: IdentityKey) -> ExistingRecord | None:
        with self._lock:
            matches = [
                ExistingRecord(i, dict(v))
                for i, v in self._records.items()
                if self._key_for(v, key.kind) == key
            ]
        if len(matches) > 1:
            raise AmbiguousMatchError(key, [m.id for m in matches])
        return matches[0] if matches else None

    def create_many(self, records: Sequence[ValidatedRecord]) -> BatchOutcome:
        with self._lock:
            existing = {
                v.get(self.identity_field)
                for v in self._records.values()
                if v.get(self.identity_field) is not None
            }
            for record in records:
                identifier = record.get(self.identity_field)
                if identifier is not None and identifier in existing:
                    raise RepositoryError(
                        f"duplicate {self.identity_field} {identifier!r} (row {record.row_number})"
                    )
                if identifier is not None:
                    existing.add(identifier)
            for record in records:
                self._records[next(self._ids)] = dict(record.values)
            self.create_calls += 1
        return BatchOutcome(created=len(records))

    def update_many(self, records: Sequence[tuple[Any, ValidatedRecord]]) -> BatchOutcome:
        with self._lock:
            missing = [rid for rid, _ in records if rid not in self._records]
            if missing:
                raise RepositoryError(f"records not found: {missing}")
            for record_id, record in records:
                self._records[record_id].update(record.values)
            self.update_calls += 1
        return BatchOutcome(updated=len(records))
