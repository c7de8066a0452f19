from __future__ import annotations

import re
from typing import Any

from confsnap.identifiers import EntityId, normalize_number
from confsnap.observability import get_logger
from confsnap.schemas import RawTagType

LABEL_SEPARATOR_RE = re.compile(r"[^a-z0-9]+")

logger = get_logger(__name__)


def normalize_label(value: Any) -> str:
    """Fold a tag label into a lowercase, underscore-separated lookup key."""
    if value is None:
        return ""
    text = str(value).strip()
    if not text:
        return ""
    return LABEL_SEPARATOR_RE.sub("_", text.lower()).strip("_")


def build_tag_ids_by_label(tag_types: list[RawTagType]) -> dict[str, Any]:
    if not tag_types:
        logger.warning("tagtypes missing or empty; tag label map will be empty")
        return {"version": 1, "byLabel": {}}

    by_label: dict[str, EntityId] = {}
    collisions: dict[str, set[EntityId]] = {}
    for tag_type in tag_types:
        for tag in tag_type.tags or []:
            if tag is None:
                continue
            tag_id = normalize_number(tag.id)
            if tag_id is None:
                continue
            key = normalize_label(tag.label)
            if not key:
                continue

            existing = by_label.get(key)
            if existing is None:
                by_label[key] = tag_id
                continue
            if existing != tag_id:
                # Lowest id wins, but the ambiguity is reported rather than hidden.
                by_label[key] = min(existing, tag_id)
                collisions.setdefault(key, set()).update({existing, tag_id})

    result: dict[str, Any] = {"version": 1, "byLabel": by_label}
    if collisions:
        result["collisions"] = {key: sorted(ids) for key, ids in sorted(collisions.items())}
        logger.warning("tag label collisions", collisions=sorted(collisions))
    return result
