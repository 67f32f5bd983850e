"""Domain models for the listing CSV importer.

This package contains the dataclasses passed between the pipeline stages:
parser output (RawRow), row errors (ValidationError), validated and classified
records, commit options and the aggregated results.
"""

from .config_models import DatabaseConfig, ImportConfig, ImportSettings, NormalizationConfig
from .error_record import ErrorRecord
from .identity import FALLBACK, PRIMARY, IdentityKey, Normalizer, build_identity_key
from .import_options import ImportOptions, InvalidOptionsError
from .import_result import ImportResult, PreviewResult, ResultAccumulator, ValidationSummary
from .raw_row import RawRow
from .session import SessionStage
from .validated_record import CommitAction, DuplicateStatus, ValidatedRecord
from .validation_error import ErrorType, ValidationError

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "ImportSettings",
    "NormalizationConfig",
    # Pipeline models
    "RawRow",
    "ValidationError",
    "ErrorType",
    "ValidatedRecord",
    "DuplicateStatus",
    "CommitAction",
    "ImportOptions",
    "InvalidOptionsError",
    # Identity matching
    "IdentityKey",
    "Normalizer",
    "PRIMARY",
    "FALLBACK",
    "build_identity_key",
    # Results
    "ImportResult",
    "PreviewResult",
    "ValidationSummary",
    "ResultAccumulator",
    "ErrorRecord",
    "SessionStage",
]
