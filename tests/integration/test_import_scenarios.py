from __future__ import annotations

import json

import pytest

from listing_import.db.repository import InMemoryRepository, RepositoryError
from listing_import.models import ImportConfig, ImportOptions, ImportSettings
from listing_import.services.orchestrator import ImportPipeline, ImportSession

"""End-to-end imports against the in-memory repository."""


def _pipeline(repo, workers: int = 2) -> ImportPipeline:
    config = ImportConfig(settings=ImportSettings(max_workers=workers, repository_timeout_seconds=10))
    return ImportPipeline(config, repository=repo, progress_factory=None)


@pytest.fixture()
def eleven_rows(listings_csv, row_factory) -> bytes:
    # 12 lines with the header: row 3 lacks a title, row 7 is already stored
    rows = [row_factory(i) for i in range(1, 12)]
    rows[2]["title"] = None
    rows[6]["placeid"] = "ChIJ-existing"
    return listings_csv(rows)


@pytest.fixture()
def seeded_repo() -> InMemoryRepository:
    repo = InMemoryRepository()
    repo.add({"placeid": "ChIJ-existing", "title": "Old name", "city": "Melbourne"})
    return repo


def test_skip_duplicates(eleven_rows, seeded_repo):
    result = _pipeline(seeded_repo).commit(eleven_rows, ImportOptions(skip_duplicates=True))
    assert (result.success, result.created, result.updated, result.duplicates_skipped) == (10, 9, 0, 1)
    assert [e.to_dict() for e in result.errors] == [
        {"row": 3, "field": "title", "value": None, "message": "title is required"}
    ]
    assert result.reconciled
    assert len(seeded_repo) == 10
    assert seeded_repo.get(1)["title"] == "Old name"


def test_update_duplicates(eleven_rows, seeded_repo):
    options = ImportOptions(update_duplicates=True)
    result = _pipeline(seeded_repo).commit(eleven_rows, options)
    assert (result.success, result.created, result.updated, result.duplicates_skipped) == (10, 9, 1, 0)
    assert len(result.errors) == 1
    updated = seeded_repo.get(1)
    assert updated["title"] == "Cafe 7"
    assert updated["status"] == "approved"


def test_session_flow_matches_stateless_pipeline(eleven_rows, seeded_repo):
    session = ImportSession(_pipeline(seeded_repo))
    preview = session.select_file(eleven_rows, name="listings.csv")
    assert preview.total_row_count == 11
    assert [e.row for e in preview.validation_errors] == [3]
    summary = session.confirm()
    assert summary.message == "Validation completed. 10 valid rows, 1 errors found."
    session.set_options(ImportOptions().with_update_duplicates())
    result = session.commit()
    assert result.message == "Import completed. 9 created, 1 updated, 0 duplicates skipped, 1 errors."


def test_reimport_is_idempotent_with_skip(listings_csv, row_factory):
    repo = InMemoryRepository()
    data = listings_csv([row_factory(i) for i in range(1, 26)])
    first = _pipeline(repo).commit(data, ImportOptions(batch_size=10))
    second = _pipeline(repo).commit(data, ImportOptions(batch_size=10))
    assert first.created == 25
    assert (second.created, second.updated, second.duplicates_skipped) == (0, 0, 25)
    assert len(repo) == 25


def test_column_order_does_not_matter(listings_csv, row_factory):
    rows = [row_factory(1), row_factory(2, email="bad"), row_factory(3, title=None)]
    header = ["title", "placeid", "address", "city", "categoryname", "phone", "email", "website"]
    a = _pipeline(InMemoryRepository()).commit(listings_csv(rows, header=header))
    b = _pipeline(InMemoryRepository()).commit(listings_csv(rows, header=list(reversed(header))))
    assert a.to_dict() == b.to_dict()


def test_reconciliation_with_every_outcome(listings_csv, row_factory):
    repo = InMemoryRepository()
    repo.add({"placeid": "ChIJ-place-0002"})
    rows = [row_factory(i) for i in range(1, 8)]
    rows[3] = {}  # blank
    rows[4]["email"] = "bad"
    rows[5]["placeid"] = rows[0]["placeid"]  # duplicate within the file
    data = listings_csv(rows) + b"only,two\n"  # malformed trailing row
    result = _pipeline(repo).commit(data, ImportOptions())
    assert result.total_rows == 8
    assert result.blank_rows == 1
    assert result.duplicates_skipped == 1
    assert result.created == 3
    assert result.failed_rows == 3
    assert result.reconciled
    assert [e.row for e in result.errors] == [5, 6, 8]
    assert result.errors[-1].field == "row"


def test_failed_batch_leaves_other_batches_committed(listings_csv, row_factory):
    class _FailSecondBatch(InMemoryRepository):
        def create_many(self, records):
            if records[0].row_number == 11:
                raise RepositoryError("deadlock detected")
            return super().create_many(records)

    repo = _FailSecondBatch()
    data = listings_csv([row_factory(i) for i in range(1, 31)])
    result = _pipeline(repo, workers=3).commit(data, ImportOptions(batch_size=10))
    assert result.created == 20
    assert [e.row for e in result.errors] == list(range(11, 21))
    assert result.reconciled
    assert len(repo) == 20


def test_results_are_deterministic_across_worker_counts(listings_csv, row_factory):
    rows = [row_factory(i, email="bad" if i % 7 == 0 else f"x{i}@y.example") for i in range(1, 60)]
    data = listings_csv(rows)
    results = [
        _pipeline(InMemoryRepository(), workers=w).commit(data, ImportOptions(batch_size=10)).to_dict()
        for w in (1, 4)
    ]
    assert results[0] == results[1]
    assert [e["row"] for e in results[0]["errors"]] == [7, 14, 21, 28, 35, 42, 49, 56]


def test_fallback_identity_matching(listings_csv, row_factory):
    repo = InMemoryRepository()
    repo.add({"title": "Cafe 1", "address": "1 Main Street, Sydney"})
    config = ImportConfig(
        settings=ImportSettings(max_workers=1),
        placeid_required=False,
    )
    pipeline = ImportPipeline(config, repository=repo, progress_factory=None)
    data = listings_csv([row_factory(1, placeid=None, title="CAFE 1", address="1 main street,  sydney"), row_factory(2, placeid=None)])
    result = pipeline.commit(data, ImportOptions())
    assert (result.created, result.duplicates_skipped) == (1, 1)


def test_fallback_mode_rerun_skips_every_valid_row(listings_csv, row_factory):
    repo = InMemoryRepository()
    config = ImportConfig(settings=ImportSettings(max_workers=1), placeid_required=False)
    pipeline = ImportPipeline(config, repository=repo, progress_factory=None)
    twin = row_factory(1, placeid=None)
    data = listings_csv([twin, dict(twin), row_factory(2, placeid=None)])

    first = pipeline.commit(data, ImportOptions())
    assert (first.created, first.duplicates_skipped) == (2, 0)
    assert [(e.row, e.error_type) for e in first.errors] == [(2, "DUPLICATE_IN_FILE")]
    assert len(repo) == 2

    second = pipeline.commit(data, ImportOptions())
    assert (second.created, second.updated, second.duplicates_skipped) == (0, 0, 2)
    assert [(e.row, e.error_type) for e in second.errors] == [(2, "DUPLICATE_IN_FILE")]
    assert second.reconciled


def test_large_json_cell_is_committed(listings_csv, row_factory):
    reviews = json.dumps([{"text": "great coffee " * 80, "stars": 5} for _ in range(214)])
    first = row_factory(1, reviews=reviews)
    data = listings_csv([first, row_factory(2)], header=list(first))
    result = _pipeline(InMemoryRepository()).commit(data, ImportOptions())
    assert (result.created, result.errors) == (2, [])
