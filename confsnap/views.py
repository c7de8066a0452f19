from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from confsnap.collation import collation_key, display_sort_key, id_sort_value, order_value, tag_sort_key
from confsnap.entities import Entities
from confsnap.identifiers import id_key
from confsnap.search import build_search_data
from confsnap.store import EntityStore, require_store

UNCATEGORIZED = "uncategorized"

VIEW_NAMES = (
    "contentCards",
    "documentsList",
    "eventCardsById",
    "organizationsCards",
    "peopleCards",
    "searchData",
    "tagTypesBrowse",
)


@dataclass(frozen=True)
class FieldSpec:
    required: frozenset[str]
    optional: frozenset[str] = frozenset()

    @property
    def allowed(self) -> frozenset[str]:
        return self.required | self.optional


TAG_SUMMARY_FIELDS = FieldSpec(frozenset({"id", "label", "colorBackground", "colorForeground"}))
BROWSE_TAG_FIELDS = FieldSpec(frozenset({"id", "label", "colorBackground", "colorForeground", "sortOrder"}))
EVENT_CARD_FIELDS = FieldSpec(
    frozenset({"id", "contentId", "title", "begin", "end", "color", "location", "speakers", "tags"})
)
ORGANIZATION_CARD_FIELDS = FieldSpec(frozenset({"id", "name"}), frozenset({"logoUrl"}))
PERSON_CARD_FIELDS = FieldSpec(frozenset({"id", "name"}), frozenset({"title", "avatarUrl"}))
TAG_TYPE_BROWSE_FIELDS = FieldSpec(frozenset({"id", "label", "category", "sortOrder", "tags"}))
DOCUMENT_LIST_FIELDS = FieldSpec(frozenset({"id", "titleText", "updatedAtMs"}))
CONTENT_CARD_FIELDS = FieldSpec(frozenset({"id", "title", "tags"}))


def format_name_list(names: list[str]) -> str | None:
    """Join names as an English conjunction list ("A, B, and C")."""
    if not names:
        return None
    if len(names) == 1:
        return names[0]
    if len(names) == 2:
        return f"{names[0]} and {names[1]}"
    return f"{', '.join(names[:-1])}, and {names[-1]}"


def name_card_sort_key(card: Mapping[str, Any]) -> tuple[Any, ...]:
    return display_sort_key(card.get("name"), card.get("id"))


def content_card_sort_key(card: Mapping[str, Any]) -> tuple[Any, ...]:
    return display_sort_key(card.get("title"), card.get("id"))


def tag_type_sort_key(tag_type: Mapping[str, Any]) -> tuple[Any, ...]:
    return (
        order_value(tag_type.get("sortOrder")),
        collation_key(tag_type.get("label")),
        id_sort_value(tag_type.get("id")),
    )


def document_sort_key(document: Mapping[str, Any]) -> tuple[Any, ...]:
    return (-order_value(document.get("updatedAtMs")), id_sort_value(document.get("id")))


def tag_summary(tag: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": tag["id"],
        "label": tag.get("label"),
        "colorBackground": tag.get("colorBackground"),
        "colorForeground": tag.get("colorForeground"),
    }


def _sorted_tag_summaries(tag_ids: list[Any], tags: EntityStore) -> list[dict[str, Any]]:
    resolved = [tag for tag in (tags.get(tag_id) for tag_id in tag_ids) if tag is not None]
    return [tag_summary(tag) for tag in sorted(resolved, key=tag_sort_key)]


def build_event_cards(events: EntityStore, tags: EntityStore, people: EntityStore, locations: EntityStore) -> dict[str, Any]:
    cards: dict[str, Any] = {}
    for event in events.records():
        names: dict[str, None] = {}
        for person_id in [*event.get("speakerIds", []), *event.get("personIds", [])]:
            name = (people.get(person_id) or {}).get("name")
            if name:
                names[str(name)] = None

        location = locations.get(event.get("locationId"))
        cards[id_key(event["id"])] = {
            "id": event["id"],
            "contentId": event.get("contentId"),
            "title": event.get("title"),
            "begin": event.get("begin"),
            "end": event.get("end"),
            "color": event.get("color"),
            "location": location.get("name") if location is not None else None,
            "speakers": format_name_list(list(names)),
            "tags": _sorted_tag_summaries(event.get("tagIds", []), tags),
        }
    return cards


def build_organization_cards(organizations: EntityStore) -> dict[str, list[dict[str, Any]]]:
    entries: list[tuple[dict[str, Any], list[Any]]] = []
    for org in organizations.records():
        card: dict[str, Any] = {"id": org["id"], "name": org.get("name")}
        if org.get("logoUrl"):
            card["logoUrl"] = org["logoUrl"]
        entries.append((card, org.get("tagIds", [])))
    entries.sort(key=lambda entry: name_card_sort_key(entry[0]))

    buckets: dict[str, list[dict[str, Any]]] = {}
    for card, tag_ids in entries:
        keys = list(dict.fromkeys(id_key(tag_id) for tag_id in tag_ids if tag_id is not None)) or [UNCATEGORIZED]
        for key in keys:
            bucket = buckets.setdefault(key, [])
            if all(existing["id"] != card["id"] for existing in bucket):
                bucket.append(card)
    return buckets


def build_people_cards(people: EntityStore) -> list[dict[str, Any]]:
    cards: list[dict[str, Any]] = []
    for person in people.records():
        card: dict[str, Any] = {"id": person["id"], "name": person.get("name")}
        if person.get("title"):
            card["title"] = person["title"]
        if person.get("avatarUrl"):
            card["avatarUrl"] = person["avatarUrl"]
        cards.append(card)
    return sorted(cards, key=name_card_sort_key)


def build_tag_types_browse(tag_types: EntityStore, tags: EntityStore) -> list[dict[str, Any]]:
    tags_by_type: dict[Any, list[dict[str, Any]]] = {}
    for tag in tags.records():
        if tag.get("tagTypeId") is None:
            continue
        tags_by_type.setdefault(tag["tagTypeId"], []).append(tag)

    groups: list[dict[str, Any]] = []
    for tag_type in tag_types.records():
        # Only browsable "content" categories are public, whatever else is tagged.
        if not tag_type.get("isBrowsable") or tag_type.get("category") != "content":
            continue
        members = sorted(tags_by_type.get(tag_type["id"], []), key=tag_sort_key)
        if not members:
            continue
        groups.append(
            {
                "id": tag_type["id"],
                "label": tag_type.get("label"),
                "category": tag_type.get("category"),
                "sortOrder": tag_type.get("sortOrder"),
                "tags": [{**tag_summary(tag), "sortOrder": tag.get("sortOrder")} for tag in members],
            }
        )
    return sorted(groups, key=tag_type_sort_key)


def build_documents_list(documents: EntityStore) -> list[dict[str, Any]]:
    entries = [
        {
            "id": document["id"],
            "titleText": document.get("titleText"),
            "updatedAtMs": document.get("updatedAtMs") or 0,
        }
        for document in documents.records()
    ]
    return sorted(entries, key=document_sort_key)


def build_content_cards(content: EntityStore, tags: EntityStore) -> list[dict[str, Any]]:
    cards = [
        {
            "id": item["id"],
            "title": item.get("title"),
            "tags": _sorted_tag_summaries(item.get("tagIds", []), tags),
        }
        for item in content.records()
    ]
    return sorted(cards, key=content_card_sort_key)


def build_views(entities: Entities | Mapping[str, Any]) -> dict[str, Any]:
    """Pre-join every display payload so the client never resolves ids itself."""
    stores = entities.stores() if isinstance(entities, Entities) else entities
    events = require_store(stores, "events")
    tags = require_store(stores, "tags")
    tag_types = require_store(stores, "tagTypes")
    organizations = require_store(stores, "organizations")
    locations = require_store(stores, "locations")
    people = require_store(stores, "people")
    content = require_store(stores, "content")
    documents = require_store(stores, "documents")

    return {
        "contentCards": build_content_cards(content, tags),
        "documentsList": build_documents_list(documents),
        "eventCardsById": build_event_cards(events, tags, people, locations),
        "organizationsCards": build_organization_cards(organizations),
        "peopleCards": build_people_cards(people),
        "searchData": build_search_data(people.records(), content.records(), organizations.records()),
        "tagTypesBrowse": build_tag_types_browse(tag_types, tags),
    }
