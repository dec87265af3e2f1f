"""Comparison keys and similarity for match-key values."""

from __future__ import annotations

import unicodedata
from decimal import Decimal
from typing import TYPE_CHECKING

from rapidfuzz import fuzz

if TYPE_CHECKING:
    from listmerge.domain.model import FieldValue

type KeyValue = str | Decimal | None
type MatchKey = tuple[KeyValue, ...]


def normalize_text(value: str) -> str | None:
    text = unicodedata.normalize("NFKC", value)
    text = " ".join(text.split()).casefold()
    return text or None


def comparison_value(value: FieldValue, *, normalize: bool = True) -> KeyValue:
    """Return the form in which ``value`` takes part in identity comparison.

    Numbers are compared by magnitude (``1.50`` equals ``1.5``). With
    ``normalize`` strings are trimmed, whitespace-collapsed and case-folded;
    without it they are compared verbatim.
    """

    if value is None:
        return None
    if isinstance(value, Decimal):
        return value.normalize()
    if normalize:
        return normalize_text(value)
    return value or None


def similarity(left: KeyValue, right: KeyValue) -> float:
    """Similarity in [0, 1]; 1.0 only for equal values."""

    if left is None or right is None:
        return 0.0
    if left == right:
        return 1.0
    return fuzz.ratio(str(left), str(right)) / 100.0
