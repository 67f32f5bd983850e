from __future__ import annotations

from ..models.import_result import ImportResult

"""SUMMARY line rendering for the import CLI."""


def _format_seconds(seconds: float) -> str:
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        # Avoid scientific notation for very small values
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(result: ImportResult) -> str:
    """Render a SUMMARY line from an ImportResult.

    Format:
    SUMMARY rows={total} created={created} updated={updated}
    duplicates_skipped={skipped} errors={errors} blank={blank} elapsed_sec={elapsed}

    Examples:
        >>> result = ImportResult(
        ...     success=10, created=9, updated=0, duplicates_skipped=1,
        ...     total_rows=12, blank_rows=2, failed_rows=0, elapsed_seconds=2.0,
        ... )
        >>> render_summary_line(result)
        'SUMMARY rows=12 created=9 updated=0 duplicates_skipped=1 errors=0 blank=2 elapsed_sec=2'
    """
    return (
        f"SUMMARY rows={result.total_rows} "
        f"created={result.created} "
        f"updated={result.updated} "
        f"duplicates_skipped={result.duplicates_skipped} "
        f"errors={len(result.errors)} "
        f"blank={result.blank_rows} "
        f"elapsed_sec={_format_seconds(result.elapsed_seconds)}"
    )
