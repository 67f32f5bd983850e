"""Field schema definitions for the listing CSV importer."""

from .business import business_schema
from .field_schema import FieldSchema, FieldSpec, SchemaError

__all__ = [
    "FieldSchema",
    "FieldSpec",
    "SchemaError",
    "business_schema",
]
