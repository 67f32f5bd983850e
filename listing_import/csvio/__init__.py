"""CSV reading for the listing importer."""

from .reader import CSVSource, ParseError, open_csv

__all__ = [
    "CSVSource",
    "ParseError",
    "open_csv",
]
