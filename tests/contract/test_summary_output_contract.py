from __future__ import annotations

import re
from pathlib import Path

from listing_import.cli import main as cli_main

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY rows=(\d+) created=(\d+) updated=(\d+) duplicates_skipped=(\d+) "
    r"errors=(\d+) blank=(\d+) elapsed_sec=(\d+(?:\.\d+)?)$"
)


def test_summary_line_format(write_config, temp_workdir: Path, listings_csv, row_factory, capsys):
    p = temp_workdir / "data" / "l.csv"
    p.write_bytes(listings_csv([row_factory(1), {}, row_factory(3, email="bad")]))
    cli_main(["commit", str(p)])
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("SUMMARY")]
    assert len(lines) == 1
    m = SUMMARY_PATTERN.match(lines[0])
    assert m is not None, lines[0]
    rows, created, updated, skipped, errors, blank = (int(g) for g in m.groups()[:6])
    assert (rows, created, updated, skipped, errors, blank) == (3, 1, 0, 0, 1, 1)


def test_summary_is_last_line(write_config, temp_workdir: Path, listings_csv, row_factory, capsys):
    p = temp_workdir / "data" / "l.csv"
    p.write_bytes(listings_csv([row_factory(1)]))
    cli_main(["commit", str(p)])
    assert capsys.readouterr().out.splitlines()[-1].startswith("SUMMARY ")
