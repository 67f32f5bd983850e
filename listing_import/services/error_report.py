from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.validation_error import ValidationError

"""Downloadable error report.

CSV with the fixed header ``Row,Field,Value,Error`` and one line per error, in
the order the errors are listed on the result. Users fix the listed rows and
re-import them, so the column names and their order must stay stable.
"""

__all__ = [
    "REPORT_COLUMNS",
    "error_report_frame",
    "render_error_report",
    "write_error_report",
]

REPORT_COLUMNS = ["Row", "Field", "Value", "Error"]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def error_report_frame(errors: Sequence[ValidationError]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Row": e.row,
                "Field": e.field,
                "Value": _cell(e.value),
                "Error": e.message,
            }
            for e in errors
        ],
        columns=REPORT_COLUMNS,
    )


def render_error_report(errors: Sequence[ValidationError]) -> str:
    return error_report_frame(errors).to_csv(index=False, lineterminator="\n")


def write_error_report(errors: Sequence[ValidationError], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_error_report(errors), encoding="utf-8", newline="")
    return path
