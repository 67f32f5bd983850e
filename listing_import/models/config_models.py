from __future__ import annotations

import os
from dataclasses import dataclass, field

from .import_options import DEFAULT_BATCH_SIZE

"""Config dataclasses for the listing CSV importer.

Built by listing_import.config.loader from config/import.yml. Every field has a
default so a minimal config (or none, for library use) still yields a usable
ImportConfig.
"""

__all__ = [
    "DatabaseConfig",
    "NormalizationConfig",
    "ImportSettings",
    "ImportConfig",
    "MAX_DEFAULT_WORKERS",
]

MAX_DEFAULT_WORKERS = 4


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None
    table: str = "businesses"


@dataclass(frozen=True)
class NormalizationConfig:
    """Normalization rules for the (name, address) fallback identity key."""
    casefold: bool = True
    collapse_whitespace: bool = True
    strip_punctuation: bool = True
    abbreviations: dict[str, str] = field(default_factory=dict)  # "street" -> "st"


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = DEFAULT_BATCH_SIZE
    preview_rows: int = 10  # Rows validated during preview
    sample_rows: int = 5  # Rows returned as preview sample
    max_workers: int | None = None  # None -> min(cpu_count, 4)
    repository_timeout_seconds: float = 30.0
    encoding: str = "utf-8-sig"
    delimiter: str = ","
    default_country_code: str = "AU"

    @property
    def workers(self) -> int:
        if self.max_workers is not None:
            return max(1, self.max_workers)
        return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_WORKERS))


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for the import process."""
    settings: ImportSettings = field(default_factory=ImportSettings)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    placeid_required: bool = True  # False enables the (title, address) fallback key
