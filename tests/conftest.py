# Shared pytest fixtures
from __future__ import annotations

import csv
import io
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from listing_import.db.repository import InMemoryRepository
from listing_import.logging.init import reset_logging

LISTING_HEADER = ["title", "placeid", "address", "city", "categoryname", "phone", "email", "website"]


@pytest.fixture(autouse=True)
def _clean_logging():
    # The stdout handler binds sys.stdout at setup time; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
        for var in ("DATABASE_URL", "PGDSN", "PGHOST"):
            monkeypatch.delenv(var, raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """import:
  batch_size: 10
  preview_rows: 10
  sample_rows: 5
  max_workers: 2
  repository_timeout_seconds: 5
  default_country_code: AU
normalization:
  casefold: true
  abbreviations:
    street: st
database:
  table: businesses
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def build_csv(header: Sequence[str], rows: Sequence[Sequence[object]], encoding: str = "utf-8") -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return buf.getvalue().encode(encoding)


def listing_row(n: int, **overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "title": f"Cafe {n}",
        "placeid": f"ChIJ-place-{n:04d}",
        "address": f"{n} Main Street, Sydney",
        "city": "Sydney",
        "categoryname": "Cafe",
        "phone": "(02) 9555 0101",
        "email": f"hello{n}@cafe.example",
        "website": f"https://cafe{n}.example",
    }
    row.update(overrides)
    return row


@pytest.fixture()
def make_csv() -> Callable[..., bytes]:
    """Build CSV bytes from a header and value rows."""
    return build_csv


@pytest.fixture()
def listings_csv() -> Callable[..., bytes]:
    """Build a listings CSV from row dicts (missing keys become empty cells)."""

    def _build(rows: Sequence[dict[str, object]], header: Sequence[str] = LISTING_HEADER) -> bytes:
        return build_csv(header, [[r.get(h) for h in header] for r in rows])

    return _build


@pytest.fixture()
def memory_repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def row_factory() -> Callable[..., dict[str, object]]:
    return listing_row
