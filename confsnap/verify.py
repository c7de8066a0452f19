from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from confsnap.collation import is_sorted, tag_sort_key
from confsnap.entities import STORE_NAMES, Entities
from confsnap.errors import StructuralError
from confsnap.identifiers import id_key, is_canonical_id, normalize_id
from confsnap.indexes import INDEX_NAMES, index_order_key
from confsnap.search import SEARCH_ENTRY_FIELDS, normalize_for_search, search_sort_key
from confsnap.store import EntityStore
from confsnap.views import (
    BROWSE_TAG_FIELDS,
    CONTENT_CARD_FIELDS,
    DOCUMENT_LIST_FIELDS,
    EVENT_CARD_FIELDS,
    ORGANIZATION_CARD_FIELDS,
    PERSON_CARD_FIELDS,
    TAG_SUMMARY_FIELDS,
    TAG_TYPE_BROWSE_FIELDS,
    UNCATEGORIZED,
    VIEW_NAMES,
    FieldSpec,
    content_card_sort_key,
    document_sort_key,
    name_card_sort_key,
    tag_type_sort_key,
)

OUTPUT_SECTIONS = ("entities", "indexes", "views", "derived")
SEARCH_ENTRY_TYPES = frozenset({"person", "content", "organization"})

# (store, field, target store) for every foreign key the entity builders resolve.
REFERENCE_FIELDS = (
    ("events", "contentId", "content"),
    ("events", "locationId", "locations"),
    ("events", "speakerIds", "people"),
    ("events", "personIds", "people"),
    ("events", "tagIds", "tags"),
    ("content", "tagIds", "tags"),
    ("people", "contentIds", "content"),
    ("organizations", "tagIds", "tags"),
    ("tags", "tagTypeId", "tagTypes"),
)

OPTIONAL_ENTITY_FIELDS = {
    "events": ("beginTimestampSeconds", "endTimestampSeconds", "speakerIds", "personIds", "tagIds", "color"),
    "content": ("tagIds", "people"),
    "people": ("description", "pronouns", "title", "affiliations", "avatarUrl", "links"),
    "organizations": ("logoUrl", "tagIds"),
    "documents": ("updatedAtMs",),
}

def check_entity_store(name: str, payload: Any, errors: list[str]) -> EntityStore | None:
    """Check one ``{allIds, byId}`` payload; return it as a store when it holds up."""
    if isinstance(payload, EntityStore):
        payload = payload.as_dict()
    label = f"entities/{name}"
    if (
        not isinstance(payload, Mapping)
        or not isinstance(payload.get("allIds"), list)
        or not isinstance(payload.get("byId"), Mapping)
    ):
        errors.append(f"{label} missing allIds/byId")
        return None

    all_ids: list[Any] = payload["allIds"]
    by_id: Mapping[str, Any] = payload["byId"]
    start = len(errors)

    bad_ids = [entity_id for entity_id in all_ids if not is_canonical_id(entity_id)]
    if bad_ids:
        errors.append(f"{label}.allIds contains non-numeric id {bad_ids[0]!r}")
        return None

    for previous, current in zip(all_ids, all_ids[1:]):
        if previous == current:
            errors.append(f"{label}.allIds contains duplicate {id_key(current)}")
        elif previous > current:
            errors.append(f"{label}.allIds not sorted at {id_key(current)}")

    expected_keys = {id_key(entity_id) for entity_id in all_ids}
    for entity_id in all_ids:
        key = id_key(entity_id)
        record = by_id.get(key)
        if not isinstance(record, Mapping):
            errors.append(f"{label}.byId missing {key}")
        elif normalize_id(record.get("id")) != entity_id:
            errors.append(f"{label}.byId id mismatch for {key}")
    extra_keys = sorted(set(by_id) - expected_keys)
    if extra_keys:
        errors.append(f"{label}.byId has keys not in allIds: {', '.join(extra_keys)}")

    if len(errors) > start:
        return None
    try:
        return EntityStore.from_payload(payload, name=label)
    except StructuralError as exc:
        errors.append(str(exc))
        return None

def _ref_values(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]

def check_optional_fields(name: str, store: EntityStore, errors: list[str]) -> None:
    for record in store.records():
        for field_name in OPTIONAL_ENTITY_FIELDS.get(name, ()):
            if field_name in record and record[field_name] in (None, [], ""):
                errors.append(f"entities/{name}.byId[{id_key(record['id'])}].{field_name} present but empty")

def check_reference_integrity(stores: Mapping[str, EntityStore], errors: list[str]) -> None:
    for source, field_name, target in REFERENCE_FIELDS:
        if source not in stores or target not in stores:
            continue
        target_store = stores[target]
        for record in stores[source].records():
            values = _ref_values(record.get(field_name))
            label = f"entities/{source}.byId[{id_key(record['id'])}].{field_name}"
            for value in values:
                if normalize_id(value) not in target_store:
                    errors.append(f"{label} references missing {target} {value!r}")
            if isinstance(record.get(field_name), list) and values != sorted(set(values)):
                errors.append(f"{label} not sorted/unique")

    if "content" in stores and "people" in stores:
        people = stores["people"]
        for item in stores["content"].records():
            for entry in item.get("people", []):
                person_id = entry.get("personId") if isinstance(entry, Mapping) else None
                if normalize_id(person_id) not in people:
                    errors.append(
                        f"entities/content.byId[{id_key(item['id'])}].people references missing people {person_id!r}"
                    )

def check_indexes(indexes: Mapping[str, Any], stores: Mapping[str, EntityStore], errors: list[str]) -> None:
    empty = EntityStore([], {})
    events = stores.get("events", empty)
    content = stores.get("content", empty)

    for name in INDEX_NAMES:
        index = indexes.get(name)
        if not isinstance(index, Mapping):
            errors.append(f"indexes/{name} missing or not a map")
            continue
        members_store = content if name == "contentByTag" else events
        order = index_order_key(name, events, content)
        for key, members in index.items():
            label = f"indexes/{name}.{key}"
            if not isinstance(members, list):
                errors.append(f"{label} is not an array")
                continue
            missing = [member for member in members if normalize_id(member) not in members_store]
            if missing:
                errors.append(f"{label} references missing ids {missing[:5]!r}")
                continue
            if len(set(members)) != len(members):
                errors.append(f"{label} contains duplicates")
            if not is_sorted(members, order):
                errors.append(f"{label} not sorted")

def check_fields(label: str, item: Any, spec: FieldSpec, errors: list[str]) -> bool:
    if not isinstance(item, Mapping):
        errors.append(f"{label} is not an object")
        return False
    keys = set(item)
    missing = spec.required - keys
    extra = keys - spec.allowed
    if missing:
        errors.append(f"{label} missing {', '.join(sorted(missing))}")
    if extra:
        errors.append(f"{label} has extra keys {', '.join(sorted(extra))}")
    if item.get("id") is None:
        errors.append(f"{label} missing id")
    return not missing and not extra

def check_tag_list(label: str, tags: Any, spec: FieldSpec, tag_store: EntityStore | None, errors: list[str]) -> None:
    if not isinstance(tags, list):
        errors.append(f"{label}.tags not array")
        return
    shaped = [check_fields(f"{label}.tags[{position}]", tag, spec, errors) for position, tag in enumerate(tags)]
    if not all(shaped):
        return
    if tag_store is None:
        return
    for tag in tags:
        if normalize_id(tag["id"]) not in tag_store:
            errors.append(f"{label}.tags references missing tag {tag['id']!r}")
            return

    def key(tag: Mapping[str, Any]) -> tuple[Any, ...]:
        return tag_sort_key(tag_store.get(normalize_id(tag["id"])) or tag)

    if not is_sorted(tags, key):
        errors.append(f"{label}.tags not sorted")

def check_sorted_list(
    label: str,
    items: Any,
    spec: FieldSpec,
    sort_key: Callable[[Mapping[str, Any]], Any],
    errors: list[str],
) -> list[Mapping[str, Any]]:
    if not isinstance(items, list):
        errors.append(f"{label} not array")
        return []
    valid = [item for position, item in enumerate(items) if check_fields(f"{label}[{position}]", item, spec, errors)]
    if len(valid) == len(items) and not is_sorted(valid, sort_key):
        errors.append(f"{label} not sorted")
    return valid

def check_event_cards(cards: Any, tag_store: EntityStore | None, errors: list[str]) -> None:
    if not isinstance(cards, Mapping) or "allIds" in cards:
        errors.append("views/eventCardsById is not an id map")
        return
    for key, card in cards.items():
        label = f"views/eventCardsById.{key}"
        if not check_fields(label, card, EVENT_CARD_FIELDS, errors):
            continue
        if id_key(card["id"]) != key:
            errors.append(f"{label} id mismatch")
        check_tag_list(label, card["tags"], TAG_SUMMARY_FIELDS, tag_store, errors)

def check_organization_cards(buckets: Any, tag_store: EntityStore | None, errors: list[str]) -> None:
    if not isinstance(buckets, Mapping):
        errors.append("views/organizationsCards not map")
        return
    for key, cards in buckets.items():
        label = f"views/organizationsCards.{key}"
        if key != UNCATEGORIZED and tag_store is not None and normalize_id(key) not in tag_store:
            errors.append(f"{label} is not a known tag bucket")
        valid = check_sorted_list(label, cards, ORGANIZATION_CARD_FIELDS, name_card_sort_key, errors)
        ids = [card["id"] for card in valid]
        if len(set(ids)) != len(ids):
            errors.append(f"{label} has duplicate id in group")

def check_tag_types_browse(groups: Any, tag_store: EntityStore | None, errors: list[str]) -> None:
    valid = check_sorted_list("views/tagTypesBrowse", groups, TAG_TYPE_BROWSE_FIELDS, tag_type_sort_key, errors)
    for group in valid:
        label = f"views/tagTypesBrowse.{id_key(group['id'])}"
        if group.get("category") != "content":
            errors.append(f"{label} is not a content tag type")
        if not group["tags"]:
            errors.append(f"{label} has no tags")
        check_tag_list(label, group["tags"], BROWSE_TAG_FIELDS, tag_store, errors)

def check_search_data(entries: Any, errors: list[str]) -> None:
    spec = FieldSpec(SEARCH_ENTRY_FIELDS)
    for entry in check_sorted_list("views/searchData", entries, spec, search_sort_key, errors):
        label = f"views/searchData.{entry['type']}.{entry['id']}"
        if entry["type"] not in SEARCH_ENTRY_TYPES:
            errors.append(f"{label} has unknown type")
        if entry["normalizedText"] != normalize_for_search(entry["text"]):
            errors.append(f"{label} normalizedText out of date")

def check_views(views: Mapping[str, Any], stores: Mapping[str, EntityStore], errors: list[str]) -> None:
    for name in VIEW_NAMES:
        if name not in views:
            errors.append(f"views/{name} missing")
    tag_store = stores.get("tags")

    if "eventCardsById" in views:
        check_event_cards(views["eventCardsById"], tag_store, errors)
    if "organizationsCards" in views:
        check_organization_cards(views["organizationsCards"], tag_store, errors)
    if "peopleCards" in views:
        check_sorted_list("views/peopleCards", views["peopleCards"], PERSON_CARD_FIELDS, name_card_sort_key, errors)
    if "tagTypesBrowse" in views:
        check_tag_types_browse(views["tagTypesBrowse"], tag_store, errors)
    if "documentsList" in views:
        check_sorted_list(
            "views/documentsList", views["documentsList"], DOCUMENT_LIST_FIELDS, document_sort_key, errors
        )
    if "contentCards" in views:
        cards = check_sorted_list(
            "views/contentCards", views["contentCards"], CONTENT_CARD_FIELDS, content_card_sort_key, errors
        )
        for card in cards:
            check_tag_list(f"views/contentCards.{id_key(card['id'])}", card["tags"], TAG_SUMMARY_FIELDS, tag_store, errors)
    if "searchData" in views:
        check_search_data(views["searchData"], errors)

def verify_outputs(
    entities: Entities | Mapping[str, Any],
    indexes: Mapping[str, Any],
    views: Mapping[str, Any],
) -> list[str]:
    """Re-check the build's own invariants; every problem found is reported."""
    payloads = entities.stores() if isinstance(entities, Entities) else entities
    errors: list[str] = []

    stores: dict[str, EntityStore] = {}
    for name in STORE_NAMES:
        store = check_entity_store(name, payloads.get(name), errors)
        if store is not None:
            stores[name] = store
            check_optional_fields(name, store, errors)

    check_reference_integrity(stores, errors)
    check_indexes(indexes, stores, errors)
    check_views(views, stores, errors)
    return errors

@dataclass(frozen=True)
class LoadedOutput:
    entities: dict[str, Any]
    indexes: dict[str, Any]
    views: dict[str, Any]
    derived: dict[str, Any]
    manifest: dict[str, Any] | None

def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise StructuralError(f"{path}: invalid JSON ({exc.msg})") from exc

def _read_section(output_dir: Path, section: str) -> dict[str, Any]:
    section_dir = output_dir / section
    if not section_dir.is_dir():
        return {}
    return {path.stem: _read_json(path) for path in sorted(section_dir.glob("*.json"))}

def load_output_dir(output_dir: Path | str) -> LoadedOutput:
    root = Path(output_dir)
    if not root.is_dir():
        raise StructuralError(f"output directory not found: {root}")
    manifest_path = root / "manifest.json"
    return LoadedOutput(
        entities=_read_section(root, "entities"),
        indexes=_read_section(root, "indexes"),
        views=_read_section(root, "views"),
        derived=_read_section(root, "derived"),
        manifest=_read_json(manifest_path) if manifest_path.is_file() else None,
    )

def verify_output_dir(output_dir: Path | str) -> list[str]:
    loaded = load_output_dir(output_dir)
    return verify_outputs(loaded.entities, loaded.indexes, loaded.views)

@dataclass(frozen=True)
class OutputSummary:
    total_files: int
    total_size_kb: int
    section_counts: dict[str, int]
    largest_files: list[dict[str, Any]]
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "totalSizeKb": self.total_size_kb,
            "sectionCounts": dict(self.section_counts),
            "largestFiles": list(self.largest_files),
            "warnings": list(self.warnings),
        }

def _size_kb(size: int) -> int:
    return max(0, int(size / 1024 + 0.5))

def summarize_output_dir(output_dir: Path | str, *, emit_raw: bool = False) -> OutputSummary:
    root = Path(output_dir)
    sections = list(OUTPUT_SECTIONS)
    if emit_raw:
        sections.append("raw")

    section_counts: dict[str, int] = {}
    files: list[Path] = []
    warnings: list[str] = []
    for section in sections:
        section_dir = root / section
        found = sorted(path for path in section_dir.glob("*.json") if path.is_file()) if section_dir.is_dir() else []
        if not found:
            warnings.append(f"{section} missing/empty")
        section_counts[section] = len(found)
        files.extend(found)

    manifest = root / "manifest.json"
    if manifest.is_file():
        files.append(manifest)
    else:
        warnings.append("manifest missing")

    sizes = [(path, path.stat().st_size) for path in files]
    largest = sorted(sizes, key=lambda entry: (-entry[1], str(entry[0])))[:5]
    return OutputSummary(
        total_files=len(sizes),
        total_size_kb=_size_kb(sum(size for _, size in sizes)),
        section_counts=section_counts,
        largest_files=[
            {"name": path.relative_to(root).as_posix(), "sizeKb": _size_kb(size)} for path, size in largest
        ],
        warnings=warnings,
    )
