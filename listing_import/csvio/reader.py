from __future__ import annotations

import codecs
import csv
import io
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, BinaryIO

from ..models.raw_row import RawRow

"""CSV row parser.

The header row defines the column order of every data row; rows are exposed as
RawRow mappings keyed by normalized header name (trimmed, lower-cased), so the
column layout of the source file does not matter downstream.

Parsing is lazy and restartable: ``CSVSource.rows()`` opens the source from
byte 0 on every call and yields rows one at a time, so each pipeline stage is
an independent forward-only pass. Only unreadable, empty or undecodable input
raises ParseError; data-shape problems (wrong cell count) are emitted as
RawRow instances carrying a ``length_mismatch`` marker.
"""

__all__ = [
    "ParseError",
    "CSVSource",
    "open_csv",
    "normalize_header",
]

logger = logging.getLogger(__name__)

DECODE_CHUNK_SIZE = 64 * 1024


def _raise_field_size_limit() -> int:
    # Cell length is bounded by the field schema, not by the csv module
    limit = sys.maxsize
    while True:
        try:
            csv.field_size_limit(limit)
            return limit
        except OverflowError:
            limit //= 10


FIELD_SIZE_LIMIT = _raise_field_size_limit()


class ParseError(Exception):
    """Raised when the input cannot be read as CSV at all."""


def normalize_header(name: str) -> str:
    return name.strip().lower()


def _clean(value: str) -> str | None:
    stripped = value.strip()
    return stripped if stripped else None


class CSVSource:
    """A validated, re-readable CSV input.

    Use ``open_csv`` to build one; construction checks the input is non-empty,
    decodes cleanly and has a header row.
    """

    def __init__(
        self,
        data: bytes | None = None,
        path: Path | None = None,
        *,
        encoding: str = "utf-8-sig",
        delimiter: str = ",",
        name: str = "<memory>",
    ) -> None:
        if (data is None) == (path is None):
            raise ValueError("exactly one of data or path is required")
        self._data = data
        self._path = path
        self.encoding = encoding
        self.delimiter = delimiter
        self.name = name
        self.raw_headers: list[str] = []
        self.headers: list[str] = []
        self.duplicate_headers: list[str] = []
        self._check_readable()
        self._read_header()

    @contextmanager
    def _binary(self) -> Iterator[BinaryIO]:
        if self._path is not None:
            try:
                fh = self._path.open("rb")
            except OSError as e:
                raise ParseError(f"could not read file {self._path}: {e}") from e
            with fh:
                yield fh
        else:
            yield io.BytesIO(self._data or b"")

    @contextmanager
    def _text(self) -> Iterator[IO[str]]:
        with self._binary() as raw:
            text = io.TextIOWrapper(raw, encoding=self.encoding, newline="")
            try:
                yield text
            finally:
                text.detach()

    def _check_readable(self) -> None:
        try:
            decoder = codecs.getincrementaldecoder(self.encoding)()
        except LookupError as e:
            raise ParseError(f"unknown encoding: {self.encoding}") from e
        seen_content = False
        with self._binary() as raw:
            try:
                while True:
                    chunk = raw.read(DECODE_CHUNK_SIZE)
                    if not chunk:
                        decoder.decode(b"", final=True)
                        break
                    if decoder.decode(chunk).strip():
                        seen_content = True
            except UnicodeDecodeError as e:
                raise ParseError(f"could not decode input as {self.encoding}: {e}") from e
        if not seen_content:
            raise ParseError("input is empty")

    def _reader(self, text: IO[str]) -> Iterator[list[str]]:
        return csv.reader(text, delimiter=self.delimiter)

    def _read_header(self) -> None:
        with self._text() as text:
            try:
                header = next(self._reader(text), None)
            except csv.Error as e:
                raise ParseError(f"unreadable header row: {e}") from e
        if header is None or not any(h.strip() for h in header):
            raise ParseError("missing header row")
        self.raw_headers = header
        self.headers = [normalize_header(h) for h in header]
        seen: set[str] = set()
        for h in self.headers:
            if h and h in seen and h not in self.duplicate_headers:
                self.duplicate_headers.append(h)
            seen.add(h)
        if self.duplicate_headers:
            logger.warning(
                "%s: duplicate header columns %s (first occurrence wins)",
                self.name,
                self.duplicate_headers,
            )

    def _to_row(self, row_number: int, cells: list[str]) -> RawRow:
        values: dict[str, str | None] = {}
        for header, cell in zip(self.headers, cells):
            # Unnamed and repeated columns carry no addressable field
            if not header or header in values:
                continue
            values[header] = _clean(cell)
        if all(not c.strip() for c in cells):
            return RawRow(row_number=row_number, values={h: None for h in values})
        if len(cells) != len(self.headers):
            return RawRow(
                row_number=row_number,
                values=values,
                length_mismatch=(
                    f"row length mismatch: expected {len(self.headers)} columns, "
                    f"got {len(cells)}"
                ),
            )
        return RawRow(row_number=row_number, values=values)

    def rows(self) -> Iterator[RawRow]:
        """Yield data rows from the start of the input.

        Every call is an independent pass; the generator should be consumed
        once per pipeline stage.
        """
        with self._text() as text:
            reader = self._reader(text)
            next(reader, None)  # header
            row_number = 0
            while True:
                try:
                    cells = next(reader)
                except StopIteration:
                    break
                except csv.Error as e:
                    row_number += 1
                    yield RawRow(
                        row_number=row_number,
                        length_mismatch=f"row length mismatch: unreadable row ({e})",
                    )
                    continue
                row_number += 1
                yield self._to_row(row_number, cells)

    def count_rows(self) -> int:
        return sum(1 for _ in self.rows())


def open_csv(
    source: bytes | bytearray | memoryview | Path | BinaryIO,
    *,
    encoding: str = "utf-8-sig",
    delimiter: str = ",",
    name: str | None = None,
) -> CSVSource:
    """Validate ``source`` and return a re-readable CSVSource.

    Paths are re-opened for every pass; byte buffers and binary streams are
    held as bytes (streams are read once here).

    Raises:
        ParseError: input unreadable, empty, undecodable, or without a header
    """
    if isinstance(source, Path):
        if not source.is_file():
            raise ParseError(f"file not found: {source}")
        return CSVSource(
            path=source, encoding=encoding, delimiter=delimiter, name=name or source.name
        )
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
    elif hasattr(source, "read"):
        try:
            data = source.read()
        except OSError as e:
            raise ParseError(f"could not read input stream: {e}") from e
        if isinstance(data, str):
            raise ParseError("input stream must be opened in binary mode")
    else:
        raise ParseError(f"unsupported input type: {type(source).__name__}")
    return CSVSource(data=data, encoding=encoding, delimiter=delimiter, name=name or "<memory>")
