from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

from ..models.validated_record import ValidatedRecord

"""Validated row -> business record payload.

Fills the derived columns a listing needs before it is stored: default
country, moderation status, slug and SEO fields.
"""

__all__ = [
    "IMPORT_STATUS",
    "SUBMITTED_BY",
    "SEO_DESCRIPTION_LIMIT",
    "slugify",
    "build_slug",
    "build_seo_title",
    "build_seo_description",
    "to_business_record",
]

IMPORT_STATUS = "approved"
SUBMITTED_BY = "csv-import"
SEO_DESCRIPTION_LIMIT = 160
SLUG_ID_SUFFIX_LENGTH = 8

_NON_SLUG = re.compile(r"[^a-z0-9\s-]")
_SPACES = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def slugify(text: str) -> str:
    slug = _NON_SLUG.sub("", text.lower())
    slug = _SPACES.sub("-", slug)
    slug = _DASHES.sub("-", slug)
    return slug.strip("-")


def build_slug(title: str, placeid: str | None) -> str:
    base = slugify(title)
    if not placeid:
        return base
    return f"{base}-{placeid[-SLUG_ID_SUFFIX_LENGTH:]}"


def build_seo_title(title: str, city: str | None, category: str | None) -> str:
    seo = title
    if city:
        seo += f" - {city}"
    if category:
        seo += f" | {category}"
    return seo


def build_seo_description(description: str) -> str:
    if len(description) > SEO_DESCRIPTION_LIMIT:
        return description[: SEO_DESCRIPTION_LIMIT - 3] + "..."
    return description


def to_business_record(record: ValidatedRecord, default_country_code: str = "AU") -> ValidatedRecord:
    """Return ``record`` with derived listing columns filled in."""
    values: dict[str, Any] = dict(record.values)
    values.setdefault("countrycode", default_country_code)
    for flag in ("featured", "permanentlyclosed", "temporarilyclosed"):
        values.setdefault(flag, False)
    values["status"] = IMPORT_STATUS
    values["submittedby"] = SUBMITTED_BY

    title = values.get("title")
    if title:
        values["slug"] = build_slug(title, values.get("placeid"))
        if not values.get("seotitle"):
            values["seotitle"] = build_seo_title(
                title, values.get("city"), values.get("categoryname")
            )
    description = values.get("description")
    if description and not values.get("seodescription"):
        values["seodescription"] = build_seo_description(description)
    return replace(record, values=values)
