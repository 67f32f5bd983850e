from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

"""RawRow model for the listing CSV importer.

A RawRow is one data record of the source CSV after header mapping. The
row_number is the 1-based data row ordinal (header excluded) and is the value
every error report refers back to.
"""

__all__ = [
    "RawRow",
]


@dataclass(frozen=True)
class RawRow:
    """One parsed CSV data row (immutable once produced by the parser).

    values maps the normalized header name to the trimmed cell value, with
    empty cells stored as None. When the number of cells does not match the
    header, ``length_mismatch`` carries a human readable description and the
    row is reported by the validator instead of being validated.
    """
    row_number: int  # 1-based, header line excluded
    values: Mapping[str, str | None] = field(default_factory=dict)
    length_mismatch: str | None = None  # "row length mismatch" marker

    def __post_init__(self) -> None:
        if not isinstance(self.values, MappingProxyType):
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @property
    def malformed(self) -> bool:
        return self.length_mismatch is not None

    @property
    def blank(self) -> bool:
        """True when every cell is empty (trailing blank lines, ",,,")."""
        return not self.malformed and all(v is None for v in self.values.values())

    def get(self, column: str) -> str | None:
        return self.values.get(column)
