from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

"""ValidatedRecord model and duplicate classification tags.

A ValidatedRecord is a RawRow that passed every Field Schema check, with its
values coerced to typed Python values. The Duplicate Detector tags it with a
DuplicateStatus and the CommitAction the Batch Committer has to perform.
"""

__all__ = [
    "DuplicateStatus",
    "CommitAction",
    "ValidatedRecord",
]


class DuplicateStatus(Enum):
    """Identity classification against the record store.

    - NEW: no stored record shares the identity key
    - DUPLICATE: a stored record matches and duplicates are skipped
    - CONFLICT: a stored record matches and must be updated (or rejected when
      neither duplicate option is active)
    """
    NEW = "new"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"


class CommitAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class ValidatedRecord:
    row_number: int  # Source data row (1-based, header excluded)
    values: dict[str, Any] = field(default_factory=dict)  # Coerced field values
    status: DuplicateStatus | None = None  # Set by the Duplicate Detector
    action: CommitAction | None = None
    existing_id: Any = None  # Store id of the matched record (updates only)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def classify(
        self,
        status: DuplicateStatus,
        action: CommitAction,
        existing_id: Any = None,
    ) -> ValidatedRecord:
        return replace(self, status=status, action=action, existing_id=existing_id)
