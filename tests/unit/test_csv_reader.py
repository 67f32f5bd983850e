from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest

from listing_import.csvio import ParseError, open_csv


def test_headers_normalized_and_cells_trimmed():
    src = open_csv(b" Title ,PlaceID\n  Cafe A , P1 \n")
    assert src.headers == ["title", "placeid"]
    assert src.raw_headers == [" Title ", "PlaceID"]
    [row] = list(src.rows())
    assert row.row_number == 1
    assert dict(row.values) == {"title": "Cafe A", "placeid": "P1"}


def test_empty_cell_becomes_none():
    [row] = list(open_csv(b"title,email\nCafe,\n").rows())
    assert row.get("email") is None


def test_bom_is_stripped():
    src = open_csv(b"\xef\xbb\xbftitle,placeid\nA,P1\n")
    assert src.headers == ["title", "placeid"]


def test_quoted_fields_with_commas_and_newlines():
    data = b'title,description\n"Cafe, Bar","line one\nline two"\n'
    [row] = list(open_csv(data).rows())
    assert row.get("title") == "Cafe, Bar"
    assert row.get("description") == "line one\nline two"


def test_row_numbers_are_data_ordinals():
    src = open_csv(b"title\nA\nB\nC\n")
    assert [r.row_number for r in src.rows()] == [1, 2, 3]


def test_rows_is_restartable():
    src = open_csv(b"title\nA\nB\n")
    first = [r.get("title") for r in src.rows()]
    second = [r.get("title") for r in src.rows()]
    assert first == second == ["A", "B"]
    assert src.count_rows() == 2


def test_blank_rows_flagged():
    rows = list(open_csv(b"title,placeid\nA,P1\n,\nB,P2\n").rows())
    assert [r.blank for r in rows] == [False, True, False]
    assert rows[2].row_number == 3


def test_length_mismatch_is_a_row_not_an_exception():
    rows = list(open_csv(b"title,placeid\nA,P1,extra\nB\nC,P3\n").rows())
    assert rows[0].malformed
    assert rows[0].length_mismatch == "row length mismatch: expected 2 columns, got 3"
    assert rows[1].length_mismatch == "row length mismatch: expected 2 columns, got 1"
    assert not rows[2].malformed


def test_duplicate_header_first_occurrence_wins():
    src = open_csv(b"title,Title\nA,B\n")
    assert src.duplicate_headers == ["title"]
    [row] = list(src.rows())
    assert row.get("title") == "A"


def test_custom_delimiter():
    [row] = list(open_csv(b"title;placeid\nA;P1\n", delimiter=";").rows())
    assert row.get("placeid") == "P1"


@pytest.mark.parametrize("data", [b"", b"   \n\n"])
def test_empty_input_raises(data):
    with pytest.raises(ParseError, match="empty"):
        open_csv(data)


def test_undecodable_input_raises():
    with pytest.raises(ParseError, match="could not decode"):
        open_csv(b"title\n\xff\xfe\xfa\n", encoding="utf-8")


def test_unknown_encoding_raises():
    with pytest.raises(ParseError, match="unknown encoding"):
        open_csv(b"title\nA\n", encoding="no-such-codec")


def test_missing_header_raises():
    with pytest.raises(ParseError, match="missing header"):
        open_csv(b",,\nA,B,C\n")


def test_path_and_stream_sources(tmp_path: Path):
    p = tmp_path / "listings.csv"
    p.write_bytes(b"title\nA\n")
    src = open_csv(p)
    assert src.name == "listings.csv"
    assert src.count_rows() == 1
    assert open_csv(io.BytesIO(b"title\nA\n")).count_rows() == 1


def test_missing_path_raises(tmp_path: Path):
    with pytest.raises(ParseError, match="file not found"):
        open_csv(tmp_path / "nope.csv")


def test_text_stream_rejected():
    with pytest.raises(ParseError, match="binary mode"):
        open_csv(io.StringIO("title\nA\n"))  # type: ignore[arg-type]


def test_large_json_cell_is_read_whole():
    reviews = json.dumps([{"text": "x" * 990, "stars": 5} for _ in range(214)])
    assert len(reviews) > 200_000
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerows(
        [["title", "placeid", "reviews"], ["Cafe A", "P1", reviews], ["Cafe B", "P2", "[]"]]
    )
    rows = list(open_csv(buf.getvalue().encode("utf-8")).rows())
    assert [r.malformed for r in rows] == [False, False]
    assert rows[0].get("reviews") == reviews
