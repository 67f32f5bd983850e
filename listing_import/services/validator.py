from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from ..models.identity import FALLBACK, IdentityKey, Normalizer, build_identity_key
from ..models.raw_row import RawRow
from ..models.validated_record import ValidatedRecord
from ..models.validation_error import ErrorType, ValidationError
from ..schema.field_schema import FieldSchema

"""Row validator.

Applies a FieldSchema to every parsed row and yields one RowOutcome per row:
either a ValidatedRecord (all checks passed, values coerced) or the complete
list of that row's errors. Rows never raise; a failing row is data.

Within a row, required fields are checked first and optional fields after,
each group in the schema's declared order, so the error list for an unchanged
file is identical on every run.
"""

__all__ = [
    "RowOutcome",
    "ValidationStats",
    "validate_rows",
    "collect",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowOutcome:
    """Tagged result for one row: ``record`` on success, ``errors`` otherwise."""
    row_number: int
    record: ValidatedRecord | None = None
    errors: tuple[ValidationError, ...] = ()
    blank: bool = False

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass
class ValidationStats:
    total_rows: int = 0
    blank_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    malformed_rows: int = 0
    errors: list[ValidationError] = field(default_factory=list)
    records: list[ValidatedRecord] = field(default_factory=list)


def _identity_keys(
    row: RawRow, schema: FieldSchema, normalizer: Normalizer
) -> tuple[IdentityKey | None, IdentityKey | None]:
    """Return the row's identity key and its (title, address) style fallback key."""
    values = {
        name: schema.lookup(row.values, name)
        for name in (schema.identity_field, *schema.fallback_identity_fields)
    }
    fields = (schema.identity_field, schema.fallback_identity_fields, normalizer)
    key = build_identity_key(values, *fields)
    if key is None or key.kind == FALLBACK:
        return key, key
    return key, build_identity_key({**values, schema.identity_field: None}, *fields)


def _validate_row(
    row: RawRow,
    schema: FieldSchema,
    normalizer: Normalizer,
    seen_identities: dict[IdentityKey, bool],
) -> RowOutcome:
    if row.malformed:
        error = ValidationError(
            row=row.row_number,
            field="row",
            value=None,
            message=row.length_mismatch or "row length mismatch",
            error_type=ErrorType.ROW_LENGTH_MISMATCH,
        )
        return RowOutcome(row_number=row.row_number, errors=(error,))

    errors: list[ValidationError] = []
    accepted: dict[str, object] = {}
    for spec in schema.ordered_for_validation():
        value = schema.lookup(row.values, spec.name)
        error = schema.validate(spec.name, value, row=row.row_number)
        if error is not None:
            errors.append(error)
        elif value is not None:
            accepted[spec.name] = value

    # seen_identities: key -> whether it was some row's own identity. Fallback
    # keys of identified rows are kept too; a fallback lookup matches any stored row
    key, fallback = _identity_keys(row, schema, normalizer)
    if key is not None:
        clash = None
        if key in seen_identities:
            clash = key
        elif key.kind != FALLBACK and seen_identities.get(fallback):
            clash = fallback
        if clash is not None:
            errors.append(
                ValidationError(
                    row=row.row_number,
                    field=clash.label,
                    value=clash.raw[0] if len(clash.raw) == 1 else ", ".join(clash.raw),
                    message=f"Duplicate {clash.describe()} found in CSV",
                    error_type=ErrorType.DUPLICATE_IN_FILE,
                )
            )
        seen_identities[key] = True
        if fallback is not None and fallback != key:
            seen_identities.setdefault(fallback, False)

    if errors:
        return RowOutcome(row_number=row.row_number, errors=tuple(errors))

    values: dict[str, object] = {}
    for name, raw in accepted.items():
        try:
            values[name] = schema.coerce(name, raw)
        except (TypeError, ValueError) as e:
            errors.append(
                ValidationError(
                    row=row.row_number,
                    field=name,
                    value=raw,
                    message=f"Could not convert value: {e}",
                )
            )
    if errors:
        return RowOutcome(row_number=row.row_number, errors=tuple(errors))
    return RowOutcome(
        row_number=row.row_number,
        record=ValidatedRecord(row_number=row.row_number, values=values),
    )


def validate_rows(
    rows: Iterable[RawRow],
    schema: FieldSchema,
    normalizer: Normalizer | None = None,
    limit: int | None = None,
) -> Iterator[RowOutcome]:
    """Validate ``rows`` lazily.

    Parameters
    ----------
    rows: parsed rows (one pass)
    schema: field schema to apply
    normalizer: text normalization for fallback identity keys (in-file repeats)
    limit: validate only the first ``limit`` rows (preview); None validates all

    Rows past ``limit`` are not read at all, so they count neither as valid nor
    as failing.
    """
    normalizer = normalizer or Normalizer()
    seen_identities: dict[IdentityKey, bool] = {}
    for index, row in enumerate(rows):
        if limit is not None and index >= limit:
            break
        if row.blank:
            yield RowOutcome(row_number=row.row_number, blank=True)
            continue
        yield _validate_row(row, schema, normalizer, seen_identities)


def collect(outcomes: Iterable[RowOutcome], keep_records: bool = True) -> ValidationStats:
    """Fold outcomes into counts, errors (in row order) and accepted records."""
    stats = ValidationStats()
    for outcome in outcomes:
        stats.total_rows += 1
        if outcome.blank:
            stats.blank_rows += 1
        elif outcome.ok:
            stats.valid_rows += 1
            if keep_records and outcome.record is not None:
                stats.records.append(outcome.record)
        else:
            stats.invalid_rows += 1
            if any(e.error_type == ErrorType.ROW_LENGTH_MISMATCH for e in outcome.errors):
                stats.malformed_rows += 1
            stats.errors.extend(outcome.errors)
    logger.debug(
        "validated rows=%d valid=%d invalid=%d blank=%d",
        stats.total_rows,
        stats.valid_rows,
        stats.invalid_rows,
        stats.blank_rows,
    )
    return stats
