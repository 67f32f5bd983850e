from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config_models import NormalizationConfig

"""Identity keys used to match incoming rows against stored records.

The external place identifier is authoritative. When a row has none, a
normalized (name, address) pair is used instead; normalization rules come from
configuration so no single locale's conventions are hard-coded.
"""

__all__ = [
    "IdentityKey",
    "Normalizer",
    "PRIMARY",
    "FALLBACK",
    "build_identity_key",
]

PRIMARY = "primary"
FALLBACK = "fallback"

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class IdentityKey:
    kind: str  # PRIMARY | FALLBACK
    fields: tuple[str, ...]  # Column names the key was built from
    value: tuple[str, ...]
    raw: tuple[str, ...] = field(default=(), compare=False)  # Unnormalized values

    @property
    def label(self) -> str:
        return ",".join(self.fields)

    def describe(self) -> str:
        return " and ".join(self.fields)


class Normalizer:
    """Configurable text normalization for fallback identity matching."""

    def __init__(self, config: NormalizationConfig | None = None) -> None:
        self.config = config or NormalizationConfig()
        self._abbreviations = {
            self._base(k): self._base(v) for k, v in self.config.abbreviations.items()
        }

    def _base(self, text: str) -> str:
        if self.config.casefold:
            text = text.casefold()
        if self.config.strip_punctuation:
            text = _PUNCTUATION.sub(" ", text)
        if self.config.collapse_whitespace:
            text = _WHITESPACE.sub(" ", text)
        return text.strip()

    @property
    def rewrites_tokens(self) -> bool:
        return bool(self._abbreviations)

    def normalize(self, text: str) -> str:
        base = self._base(text)
        if not self._abbreviations:
            return base
        return " ".join(self._abbreviations.get(tok, tok) for tok in base.split(" "))


def build_identity_key(
    values: Mapping[str, Any],
    identity_field: str,
    fallback_fields: Sequence[str],
    normalizer: Normalizer,
) -> IdentityKey | None:
    """Build the identity key for ``values``.

    Returns None when neither the identifier nor every fallback field is present.
    """
    identifier = values.get(identity_field)
    if identifier is not None and str(identifier).strip():
        ident = str(identifier).strip()
        return IdentityKey(PRIMARY, (identity_field,), (ident,), (ident,))
    if not fallback_fields:
        return None
    parts: list[str] = []
    raw_parts: list[str] = []
    for name in fallback_fields:
        raw = values.get(name)
        if raw is None or not str(raw).strip():
            return None
        parts.append(normalizer.normalize(str(raw)))
        raw_parts.append(str(raw).strip())
    return IdentityKey(FALLBACK, tuple(fallback_fields), tuple(parts), tuple(raw_parts))
