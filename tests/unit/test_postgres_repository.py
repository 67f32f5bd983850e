from __future__ import annotations

import psycopg2
import pytest
from psycopg2.extras import Json

import listing_import.db.batch_insert as bi
from listing_import.db.postgres import PostgresRepository, table_columns
from listing_import.db.repository import AmbiguousMatchError, RepositoryError
from listing_import.models import NormalizationConfig, ValidatedRecord
from listing_import.models.identity import FALLBACK, PRIMARY, IdentityKey, Normalizer, build_identity_key
from listing_import.schema import FieldSchema, business_schema


class FakeCursor:
    def __init__(self, conn) -> None:
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.fail:
            raise psycopg2.OperationalError("server closed the connection")
        self.conn.executed.append((sql, params))

    def fetchall(self):
        return self.conn.result


class FakeConn:
    def __init__(self) -> None:
        self.executed: list = []
        self.result: list = []
        self.fail = False
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commits += 1
        else:
            self.rollbacks += 1
        return False

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)


class FakePool:
    def __init__(self) -> None:
        self.conn = FakeConn()
        self.out = 0

    def getconn(self):
        self.out += 1
        return self.conn

    def putconn(self, conn):
        self.out -= 1

    def closeall(self):
        pass


@pytest.fixture()
def pool() -> FakePool:
    return FakePool()


@pytest.fixture()
def repo(pool) -> PostgresRepository:
    return PostgresRepository(pool, business_schema())


def test_columns_include_derived(repo):
    assert repo.columns == table_columns(business_schema())
    assert repo.columns[-3:] == ["slug", "status", "submittedby"]


def test_invalid_table_name_rejected(pool):
    with pytest.raises(ValueError):
        PostgresRepository(pool, business_schema(), table="x; drop table y")


def test_find_by_placeid(repo, pool):
    pool.conn.result = [{"id": 5, "placeid": "P1", "title": "A"}]
    found = repo.find_by_identity(IdentityKey(PRIMARY, ("placeid",), ("P1",)))
    assert found.id == 5
    assert found.values == {"placeid": "P1", "title": "A"}
    sql, params = pool.conn.executed[0]
    assert sql.endswith('WHERE "placeid" = %s')
    assert params == ("P1",)
    assert pool.out == 0


def test_fallback_lookup_filters_by_normalized_key(repo, pool):
    pool.conn.result = [
        {"id": 1, "placeid": "P1", "title": "Joe's Cafe", "address": "1 Main St."},
        {"id": 2, "placeid": "P2", "title": "Joes Cafe", "address": "99 Other Rd"},
    ]
    key = IdentityKey(FALLBACK, ("title", "address"), ("joe s cafe", "1 main st"), ("Joe's Cafe", "1 Main St"))
    found = repo.find_by_identity(key)
    assert found.id == 1
    assert pool.conn.executed[0][1] == ("joescafe",)


def test_fallback_ambiguous(repo, pool):
    pool.conn.result = [
        {"id": 1, "title": "Joe's Cafe", "address": "1 Main St"},
        {"id": 2, "title": "JOE'S CAFE", "address": "1 main st"},
    ]
    key = IdentityKey(FALLBACK, ("title", "address"), ("joe s cafe", "1 main st"), ("Joe's Cafe", "1 Main St"))
    with pytest.raises(AmbiguousMatchError):
        repo.find_by_identity(key)


def test_driver_errors_become_repository_errors(repo, pool):
    pool.conn.fail = True
    with pytest.raises(RepositoryError, match="lookup failed"):
        repo.find_by_identity(IdentityKey(PRIMARY, ("placeid",), ("P1",)))
    assert pool.conn.rollbacks == 1
    assert pool.out == 0


def test_create_many_uses_execute_values(repo, pool, monkeypatch):
    captured = {}

    def fake_execute_values(cursor, sql, rows, page_size=1000, template=None):
        captured["sql"] = sql
        captured["rows"] = rows

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    record = ValidatedRecord(1, {"title": "A", "placeid": "P1", "categories": ["Cafe"], "status": "approved"})
    outcome = repo.create_many([record])
    assert outcome.created == 1
    assert captured["sql"].startswith("INSERT INTO businesses (")
    [row] = captured["rows"]
    values = dict(zip(repo.columns, row))
    assert values["title"] == "A"
    assert values["status"] == "approved"
    assert isinstance(values["categories"], Json)
    assert values["email"] is None
    assert pool.conn.commits == 1


def test_create_many_failure(repo, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("duplicate key value")

    monkeypatch.setattr(bi, "execute_values", boom)
    with pytest.raises(RepositoryError, match="duplicate key value"):
        repo.create_many([ValidatedRecord(1, {"title": "A"})])


def test_update_many_only_present_columns(repo, monkeypatch):
    statements = []

    def fake_execute_batch(cursor, sql, rows, page_size=100):
        statements.append((sql, rows))

    monkeypatch.setattr(bi, "execute_batch", fake_execute_batch)
    outcome = repo.update_many([(9, ValidatedRecord(1, {"title": "New", "city": "Perth"}))])
    assert outcome.updated == 1
    [(sql, rows)] = statements
    assert sql == 'UPDATE businesses SET "title" = %s, "city" = %s WHERE "id" = %s'
    assert rows == [("New", "Perth", 9)]


def test_fallback_prefilter_uses_first_fallback_column(pool):
    base = business_schema()
    schema = FieldSchema(list(base.fields), "placeid", ("address", "title"))
    repo = PostgresRepository(pool, schema)
    pool.conn.result = [{"id": 3, "title": "Joe's Cafe", "address": "1 Main St"}]
    key = IdentityKey(FALLBACK, ("address", "title"), ("1 main st", "joe s cafe"), ("1 Main St", "Joe's Cafe"))
    assert repo.find_by_identity(key).id == 3
    sql, params = pool.conn.executed[0]
    assert "lower(\"address\")" in sql
    assert params == ("1mainst",)


def test_fallback_with_abbreviations_matches_rewritten_title(pool):
    normalizer = Normalizer(NormalizationConfig(abbreviations={"saint": "st", "street": "st"}))
    repo = PostgresRepository(pool, business_schema(), normalizer=normalizer)
    pool.conn.result = [
        {"id": 4, "placeid": "P4", "title": "Saint Kilda Cafe", "address": "2 Acland Street"},
        {"id": 5, "placeid": "P5", "title": "Saint Kilda Cafe", "address": "9 Fitzroy Street"},
    ]
    key = build_identity_key(
        {"title": "St Kilda Cafe", "address": "2 Acland St"}, "placeid", ("title", "address"), normalizer
    )
    assert repo.find_by_identity(key).id == 4
    sql, params = pool.conn.executed[0]
    assert sql.endswith('WHERE "title" IS NOT NULL AND "address" IS NOT NULL')
    assert params == ()
