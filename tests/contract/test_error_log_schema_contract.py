from __future__ import annotations

import json
from pathlib import Path

from listing_import.cli import main as cli_main
from listing_import.models import ErrorType

"""JSON Lines error log contract: one object per error with a fixed key set."""

REQUIRED_KEYS = {"timestamp", "file", "row", "field", "error_type", "message"}


def test_error_log_lines(write_config, temp_workdir: Path, listings_csv, row_factory):
    p = temp_workdir / "data" / "listings.csv"
    p.write_bytes(listings_csv([row_factory(1), row_factory(2, title=None), row_factory(3, placeid="ChIJ-place-0001")]))
    assert cli_main(["commit", str(p)]) == 2

    [log] = (temp_workdir / "logs").glob("errors-*.log")
    records = [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines()]
    assert all(set(r) == REQUIRED_KEYS for r in records)
    assert [(r["row"], r["field"], r["error_type"]) for r in records] == [
        (2, "title", ErrorType.VALIDATION_ERROR),
        (3, "placeid", ErrorType.DUPLICATE_IN_FILE),
    ]
    assert {r["file"] for r in records} == {"listings.csv"}
    assert all(r["timestamp"].endswith("Z") for r in records)


def test_no_log_without_errors(write_config, temp_workdir: Path, listings_csv, row_factory):
    p = temp_workdir / "data" / "listings.csv"
    p.write_bytes(listings_csv([row_factory(1)]))
    assert cli_main(["commit", str(p)]) == 0
    assert list((temp_workdir / "logs").glob("errors-*.log")) == []
