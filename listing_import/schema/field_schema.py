from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..models.validation_error import ErrorType, ValidationError

"""Declarative field schema.

A FieldSchema is an ordered list of FieldSpec entries. The declared order is
the order errors are reported in, and it is independent of the column order of
any particular CSV file (rows are looked up by header name).

Validators are plain callables ``(value: str) -> str | None`` returning an
error message, or None when the value is acceptable. Coercers turn an accepted
string into the typed value stored on the ValidatedRecord.
"""

__all__ = [
    "Validator",
    "Coercer",
    "FieldSpec",
    "FieldSchema",
    "SchemaError",
]

Validator = Callable[[str], "str | None"]
Coercer = Callable[[str], Any]


class SchemaError(Exception):
    """Raised when a FieldSchema definition is inconsistent."""


@dataclass(frozen=True)
class FieldSpec:
    name: str
    required: bool = False
    validators: tuple[Validator, ...] = ()
    coerce: Coercer | None = None
    aliases: tuple[str, ...] = ()  # Alternate header names, first match wins


class FieldSchema:
    """Ordered set of field specs plus the identity-key contract.

    Parameters
    ----------
    fields: field specs in report order
    identity_field: column holding the authoritative external identifier
    fallback_identity_fields: columns forming the fallback identity key when
        the identifier is absent (e.g. name + address)
    """

    def __init__(
        self,
        fields: Sequence[FieldSpec],
        identity_field: str,
        fallback_identity_fields: Sequence[str],
    ) -> None:
        names = [f.name for f in fields]
        if len(set(names)) != len(names):
            raise SchemaError(f"duplicate field names in schema: {names}")
        unknown = [n for n in (identity_field, *fallback_identity_fields) if n not in names]
        if unknown:
            raise SchemaError(f"identity fields not declared in schema: {unknown}")
        self._fields: tuple[FieldSpec, ...] = tuple(fields)
        self._by_name: dict[str, FieldSpec] = {f.name: f for f in fields}
        self.identity_field = identity_field
        self.fallback_identity_fields = tuple(fallback_identity_fields)

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        return self._fields

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self._fields]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def field(self, name: str) -> FieldSpec:
        return self._by_name[name]

    def required_fields(self) -> set[str]:
        return {f.name for f in self._fields if f.required}

    def ordered_for_validation(self) -> list[FieldSpec]:
        """Required fields first, then optional ones, each in declared order."""
        required = [f for f in self._fields if f.required]
        optional = [f for f in self._fields if not f.required]
        return required + optional

    def known_columns(self) -> set[str]:
        cols: set[str] = set()
        for f in self._fields:
            cols.add(f.name)
            cols.update(f.aliases)
        return cols

    def lookup(self, values: Mapping[str, Any], name: str) -> Any:
        """Return the cell value for ``name``, falling back to its aliases."""
        spec = self._by_name[name]
        value = values.get(name)
        if value is None:
            for alias in spec.aliases:
                value = values.get(alias)
                if value is not None:
                    break
        return value

    def validate(self, field: str, value: Any, row: int = 0) -> ValidationError | None:
        """Validate a single value; returns the first failing check or None."""
        spec = self._by_name[field]
        if value is None or (isinstance(value, str) and value.strip() == ""):
            if spec.required:
                return ValidationError(
                    row=row, field=field, value=value, message=f"{field} is required"
                )
            return None
        for check in spec.validators:
            message = check(value)
            if message:
                return ValidationError(
                    row=row,
                    field=field,
                    value=value,
                    message=message,
                    error_type=ErrorType.VALIDATION_ERROR,
                )
        return None

    def coerce(self, field: str, value: Any) -> Any:
        spec = self._by_name[field]
        if value is None or spec.coerce is None:
            return value
        return spec.coerce(value)

    def with_fields(self, extra: Iterable[FieldSpec]) -> FieldSchema:
        """Return a new schema with ``extra`` specs appended (or replacing same-named ones)."""
        merged = {f.name: f for f in self._fields}
        for spec in extra:
            merged[spec.name] = spec
        return FieldSchema(
            list(merged.values()), self.identity_field, self.fallback_identity_fields
        )

    def without_fields(self, names: Iterable[str]) -> FieldSchema:
        drop = set(names)
        return FieldSchema(
            [f for f in self._fields if f.name not in drop],
            self.identity_field,
            self.fallback_identity_fields,
        )
