from __future__ import annotations

from dataclasses import dataclass, replace

"""ImportOptions: per-session commit options.

updateDuplicates and skipDuplicates are mutually exclusive; the ``with_*``
helpers switch one on and clear the other. Instances are frozen so the options
cannot change while a commit is running.
"""

__all__ = [
    "ImportOptions",
    "InvalidOptionsError",
    "MIN_BATCH_SIZE",
    "MAX_BATCH_SIZE",
    "DEFAULT_BATCH_SIZE",
]

MIN_BATCH_SIZE = 10
MAX_BATCH_SIZE = 200
DEFAULT_BATCH_SIZE = 50


class InvalidOptionsError(ValueError):
    """Raised when ImportOptions violate their invariants."""


@dataclass(frozen=True)
class ImportOptions:
    update_duplicates: bool = False
    skip_duplicates: bool | None = None  # None: the opposite of update_duplicates
    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        if self.skip_duplicates is None:
            object.__setattr__(self, "skip_duplicates", not self.update_duplicates)
        if self.update_duplicates and self.skip_duplicates:
            raise InvalidOptionsError(
                "update_duplicates and skip_duplicates are mutually exclusive"
            )
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise InvalidOptionsError(f"batch_size must be an integer, got {self.batch_size!r}")
        if not MIN_BATCH_SIZE <= self.batch_size <= MAX_BATCH_SIZE:
            raise InvalidOptionsError(
                f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, "
                f"got {self.batch_size}"
            )

    def with_update_duplicates(self, enabled: bool = True) -> ImportOptions:
        return replace(
            self,
            update_duplicates=enabled,
            skip_duplicates=False if enabled else self.skip_duplicates,
        )

    def with_skip_duplicates(self, enabled: bool = True) -> ImportOptions:
        return replace(
            self,
            skip_duplicates=enabled,
            update_duplicates=False if enabled else self.update_duplicates,
        )

    def with_batch_size(self, batch_size: int) -> ImportOptions:
        return replace(self, batch_size=batch_size)
