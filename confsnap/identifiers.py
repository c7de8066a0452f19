from __future__ import annotations

import math
import re
from collections.abc import Collection, Iterable
from typing import Any, TypeAlias

EntityId: TypeAlias = int | float

PREFIXED_INT_RE = re.compile(r"^[+-]?0[xXoObB][0-9a-fA-F]+$")


def _finite_number(number: float) -> EntityId | None:
    if not math.isfinite(number):
        return None
    if number.is_integer():
        return int(number)
    return number


def normalize_number(value: Any) -> EntityId | None:
    """Coerce a raw scalar into a finite number, or None.

    Numbers pass through (integral floats collapse to int), strings are trimmed
    and parsed, and everything else, booleans included, is rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _finite_number(value)
    if isinstance(value, str):
        text = value.strip()
        if not text or "_" in text:
            return None
        if PREFIXED_INT_RE.match(text):
            try:
                return int(text, 0)
            except ValueError:
                return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return _finite_number(float(text))
        except ValueError:
            return None
    return None


def normalize_id(value: Any) -> EntityId | None:
    return normalize_number(value)


def is_canonical_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def id_key(value: EntityId) -> str:
    return str(value)


def uniq_and_filter_ids(values: Iterable[Any] | None, valid: Collection[EntityId] | None = None) -> list[EntityId]:
    """Normalize ids, dropping unresolvable ones and repeats; first occurrence wins."""
    seen: set[EntityId] = set()
    result: list[EntityId] = []
    for value in values or ():
        entity_id = normalize_id(value)
        if entity_id is None:
            continue
        if valid is not None and entity_id not in valid:
            continue
        if entity_id in seen:
            continue
        seen.add(entity_id)
        result.append(entity_id)
    return result


def sorted_ids(values: Iterable[Any] | None, valid: Collection[EntityId] | None = None) -> list[EntityId]:
    return sorted(uniq_and_filter_ids(values, valid))
