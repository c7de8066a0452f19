from __future__ import annotations

import unicodedata
from collections.abc import Iterable, Mapping
from typing import Any

from confsnap.collation import base_key

SEARCH_ENTRY_FIELDS = frozenset({"id", "text", "type", "normalizedText"})


def normalize_for_search(text: Any) -> str:
    """Fold text to lowercase letter/digit runs separated by single spaces."""
    if text is None:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text)).lower()
    words: list[str] = []
    current: list[str] = []
    for ch in decomposed:
        category = unicodedata.category(ch)
        if category.startswith("M"):
            continue
        if category[0] in {"L", "N"}:
            current.append(ch)
            continue
        if current:
            words.append("".join(current))
            current = []
    if current:
        words.append("".join(current))
    return " ".join(words)


def search_sort_key(entry: Mapping[str, Any]) -> str:
    return base_key(entry.get("text"))


def _entries(records: Iterable[Mapping[str, Any]], text_field: str, entry_type: str) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    for record in records:
        text = record.get(text_field)
        entries.append(
            {
                "id": record.get("id"),
                "text": text,
                "type": entry_type,
                "normalizedText": normalize_for_search(text),
            }
        )
    return entries


def build_search_data(
    people: Iterable[Mapping[str, Any]],
    content: Iterable[Mapping[str, Any]],
    organizations: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    entries = [
        *_entries(people, "name", "person"),
        *_entries(content, "title", "content"),
        *_entries(organizations, "name", "organization"),
    ]
    return sorted(entries, key=search_sort_key)


def search_index(entries: Iterable[Mapping[str, Any]] | None, query: Any) -> list[Mapping[str, Any]]:
    needle = normalize_for_search(query)
    if not needle:
        return []
    return [entry for entry in entries or [] if needle in str(entry.get("normalizedText") or "")]
