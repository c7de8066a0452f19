"""Ordering contracts shared by the builders and the verifier.

Strings compare the way an English locale collator does at the levels we care
about: base letters first (accents and case ignored), then accents, then case
with lowercase ahead of uppercase.  Every sort in the pipeline goes through the
key functions below so that the verifier can re-check the exact same order.
"""

from __future__ import annotations

import math
import unicodedata
from collections.abc import Mapping
from typing import Any

from confsnap.identifiers import normalize_id, normalize_number


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _strip_marks(text: str) -> str:
    return "".join(ch for ch in text if not unicodedata.combining(ch))


def base_key(value: Any) -> str:
    """Case- and accent-insensitive comparison key."""
    decomposed = unicodedata.normalize("NFKD", _text(value))
    return _strip_marks(decomposed).casefold()


def collation_key(value: Any) -> tuple[str, str, str, str]:
    text = _text(value)
    decomposed = unicodedata.normalize("NFKD", text)
    return (
        _strip_marks(decomposed).casefold(),
        decomposed.casefold(),
        decomposed.swapcase(),
        text,
    )


def id_sort_value(value: Any) -> float:
    entity_id = normalize_id(value)
    return math.inf if entity_id is None else entity_id


def order_value(value: Any, default: float = 0) -> float:
    number = normalize_number(value)
    return default if number is None else number


def tag_sort_key(tag: Mapping[str, Any]) -> tuple[Any, ...]:
    """(sortOrder, label, id): the system-wide tag ordering."""
    return (
        order_value(tag.get("sortOrder")),
        collation_key(tag.get("label")),
        id_sort_value(tag.get("id")),
    )


def display_sort_key(text: Any, entity_id: Any) -> tuple[Any, ...]:
    """Case-insensitive display text, then id."""
    return (base_key(text), id_sort_value(entity_id))


def is_sorted(items: list[Any], key: Any) -> bool:
    keys = [key(item) for item in items]
    return all(keys[index - 1] <= keys[index] for index in range(1, len(keys)))
