from __future__ import annotations

import json
import math
import re

from .field_schema import FieldSchema, FieldSpec, Validator

"""Business listing field set.

Required: title, placeid. Everything else is optional and only validated when
present. The identity contract is placeid, falling back to (title, address).
"""

__all__ = [
    "EMAIL_REGEX",
    "URL_REGEX",
    "JSON_FIELDS",
    "NUMERIC_FIELDS",
    "BOOLEAN_FIELDS",
    "max_length",
    "email_format",
    "phone_format",
    "url_format",
    "json_format",
    "number_format",
    "integer_format",
    "boolean_format",
    "number_range",
    "to_float",
    "to_int",
    "to_bool",
    "to_json",
    "business_schema",
]

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
URL_REGEX = re.compile(r"^https?://.+", re.IGNORECASE)
PHONE_SEPARATORS = re.compile(r"[\s\-().]")
MIN_PHONE_DIGITS = 7

TRUE_VALUES = frozenset({"true", "yes", "1", "y"})
FALSE_VALUES = frozenset({"false", "no", "0", "n"})

JSON_FIELDS = (
    "categories",
    "reviewsdistribution",
    "reviews",
    "imageurls",
    "openinghours",
    "amenities",
)
NUMERIC_FIELDS = ("lat", "lng", "totalscore", "reviewscount")
BOOLEAN_FIELDS = ("featured", "permanentlyclosed", "temporarilyclosed")


def max_length(limit: int) -> Validator:
    def check(value: str) -> str | None:
        if len(value) > limit:
            return f"Must be at most {limit} characters"
        return None
    return check


def email_format(value: str) -> str | None:
    return None if EMAIL_REGEX.match(value) else "Invalid email format"


def phone_format(value: str) -> str | None:
    if len(PHONE_SEPARATORS.sub("", value)) < MIN_PHONE_DIGITS:
        return "Phone number appears to be too short"
    return None


def url_format(value: str) -> str | None:
    return None if URL_REGEX.match(value) else "Invalid website URL format"


def json_format(value: str) -> str | None:
    try:
        json.loads(value)
    except ValueError:
        return "Invalid JSON format"
    return None


def _finite(value: str) -> float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def number_format(value: str) -> str | None:
    return None if _finite(value) is not None else "Must be a valid number"


def integer_format(value: str) -> str | None:
    number = _finite(value)
    if number is None or not number.is_integer():
        return "Must be a valid integer"
    return None


def boolean_format(value: str) -> str | None:
    if value.strip().lower() in TRUE_VALUES | FALSE_VALUES:
        return None
    return "Must be true or false"


def number_range(low: float, high: float) -> Validator:
    def check(value: str) -> str | None:
        number = _finite(value)
        # number_format reports unparsable values
        if number is not None and not low <= number <= high:
            return f"Must be between {low:g} and {high:g}"
        return None
    return check


def to_float(value: str) -> float:
    return float(value)


def to_int(value: str) -> int:
    return int(float(value))


def to_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def to_json(value: str) -> object:
    return json.loads(value)


def _text(name: str, limit: int = 255, **kwargs) -> FieldSpec:
    return FieldSpec(name=name, validators=(max_length(limit),), **kwargs)


def business_schema(placeid_required: bool = True) -> FieldSchema:
    """Build the field schema for business directory listings.

    With ``placeid_required=False`` rows without a place id are accepted and
    matched against the store by the (title, address) fallback key.
    """
    fields = [
        FieldSpec("title", required=True, validators=(max_length(255),)),
        FieldSpec("placeid", required=placeid_required, validators=(max_length(255),)),
        _text("subtitle"),
        _text("description", limit=5000),
        _text("categoryname", aliases=("category",)),
        FieldSpec("website", validators=(max_length(2048), url_format)),
        FieldSpec("phone", validators=(max_length(50), phone_format)),
        _text("phoneunformatted", limit=50),
        FieldSpec("email", validators=(max_length(255), email_format)),
        _text("address", limit=500),
        _text("neighborhood"),
        _text("street"),
        _text("city"),
        _text("postalcode", limit=20),
        _text("state"),
        _text("countrycode", limit=2),
        FieldSpec("lat", validators=(number_format, number_range(-90, 90)), coerce=to_float),
        FieldSpec("lng", validators=(number_format, number_range(-180, 180)), coerce=to_float),
        FieldSpec("totalscore", validators=(number_format,), coerce=to_float),
        FieldSpec("reviewscount", validators=(integer_format,), coerce=to_int),
    ]
    fields += [
        FieldSpec(name, validators=(boolean_format,), coerce=to_bool) for name in BOOLEAN_FIELDS
    ]
    fields += [
        FieldSpec("imageurl", validators=(max_length(2048),)),
        FieldSpec("logo", validators=(max_length(2048),)),
    ]
    fields += [FieldSpec(name, validators=(json_format,), coerce=to_json) for name in JSON_FIELDS]
    fields += [
        _text("seotitle"),
        _text("seodescription", limit=500),
    ]
    return FieldSchema(
        fields,
        identity_field="placeid",
        fallback_identity_fields=("title", "address"),
    )
