"""Record store access for the listing importer."""

from .repository import (
    AmbiguousMatchError,
    BatchOutcome,
    ExistingRecord,
    InMemoryRepository,
    RecordRepository,
    RepositoryError,
    RepositoryTimeoutError,
)

__all__ = [
    "AmbiguousMatchError",
    "BatchOutcome",
    "ExistingRecord",
    "InMemoryRepository",
    "RecordRepository",
    "RepositoryError",
    "RepositoryTimeoutError",
]
