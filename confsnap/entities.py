from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from confsnap.collation import collation_key, tag_sort_key
from confsnap.errors import MissingIdError
from confsnap.identifiers import EntityId, normalize_id, normalize_number, sorted_ids, uniq_and_filter_ids
from confsnap.schemas import (
    RawArticle,
    RawCollections,
    RawContent,
    RawDocument,
    RawEvent,
    RawLocation,
    RawMenu,
    RawMenuItem,
    RawOrganization,
    RawPerson,
    RawTagType,
)
from confsnap.store import EntityStore
from confsnap.timezones import resolve_event_begin_ms, resolve_event_end_ms, resolve_updated_at_ms

ORGANIZATION_DESCRIPTION_PLACEHOLDER = "TBD"

STORE_NAMES = (
    "articles",
    "content",
    "documents",
    "events",
    "locations",
    "menus",
    "organizations",
    "people",
    "tagTypes",
    "tags",
)


@dataclass(frozen=True)
class ReferenceSets:
    location_ids: frozenset[EntityId]
    person_ids: frozenset[EntityId]
    tag_ids: frozenset[EntityId]
    content_ids: frozenset[EntityId]

    @classmethod
    def from_collections(cls, collections: RawCollections) -> ReferenceSets:
        tag_ids = [tag.id for group in collections.tagtypes for tag in (group.tags or []) if tag is not None]
        return cls(
            location_ids=frozenset(uniq_and_filter_ids(record.id for record in collections.locations)),
            person_ids=frozenset(uniq_and_filter_ids(record.id for record in collections.speakers)),
            tag_ids=frozenset(uniq_and_filter_ids(tag_ids)),
            content_ids=frozenset(uniq_and_filter_ids(record.id for record in collections.content)),
        )


@dataclass(frozen=True)
class Entities:
    articles: EntityStore
    content: EntityStore
    documents: EntityStore
    events: EntityStore
    locations: EntityStore
    menus: EntityStore
    organizations: EntityStore
    people: EntityStore
    tag_types: EntityStore
    tags: EntityStore

    def stores(self) -> dict[str, EntityStore]:
        return {
            "articles": self.articles,
            "content": self.content,
            "documents": self.documents,
            "events": self.events,
            "locations": self.locations,
            "menus": self.menus,
            "organizations": self.organizations,
            "people": self.people,
            "tagTypes": self.tag_types,
            "tags": self.tags,
        }

    def __iter__(self) -> Iterator[tuple[str, EntityStore]]:
        return iter(self.stores().items())

    def counts(self) -> dict[str, int]:
        return {name: len(store) for name, store in self}


def _require_id(value: Any, kind: str) -> EntityId:
    entity_id = normalize_id(value)
    if entity_id is None:
        raise MissingIdError(f"{kind} missing id")
    return entity_id


def _resolve(value: Any, valid: frozenset[EntityId]) -> EntityId | None:
    entity_id = normalize_id(value)
    if entity_id is None or entity_id not in valid:
        return None
    return entity_id


def build_event_model(event: RawEvent, refs: ReferenceSets) -> dict[str, Any]:
    event_id = _require_id(event.id, "event")
    raw_location = event.location.id if event.location is not None and event.location.id is not None else None
    if raw_location is None:
        raw_location = event.location_id

    model: dict[str, Any] = {
        "id": event_id,
        "title": event.title,
        "contentId": _resolve(event.content_id, refs.content_ids),
        "begin": event.begin_tsz if event.begin_tsz is not None else event.begin,
        "end": event.end_tsz if event.end_tsz is not None else event.end,
        "locationId": _resolve(raw_location, refs.location_ids),
    }

    begin_ms = resolve_event_begin_ms(event)
    if begin_ms is not None:
        model["beginTimestampSeconds"] = begin_ms // 1000
    end_ms = resolve_event_end_ms(event)
    if end_ms is not None:
        model["endTimestampSeconds"] = end_ms // 1000

    speaker_ids = sorted_ids((speaker.id for speaker in event.speakers or [] if speaker is not None), refs.person_ids)
    person_ids = sorted_ids((person.person_id for person in event.people or [] if person is not None), refs.person_ids)
    tag_ids = sorted_ids(event.tag_ids, refs.tag_ids)
    if speaker_ids:
        model["speakerIds"] = speaker_ids
    if person_ids:
        model["personIds"] = person_ids
    if tag_ids:
        model["tagIds"] = tag_ids

    color = event.event_type.color if event.event_type is not None else None
    if color:
        model["color"] = color
    return model


def _people_order_key(entry: dict[str, Any]) -> tuple[Any, ...]:
    sort_order = entry["sortOrder"]
    if sort_order is None:
        return (1, 0, entry["personId"])
    return (0, sort_order, entry["personId"])


def build_content_model(item: RawContent, refs: ReferenceSets) -> dict[str, Any]:
    content_id = _require_id(item.id, "content item")
    sessions = sorted_ids(session.session_id for session in item.sessions or [] if session is not None)
    model: dict[str, Any] = {
        "id": content_id,
        "title": item.title,
        "sessions": sessions,
    }

    tag_ids = sorted_ids(item.tag_ids, refs.tag_ids)
    if tag_ids:
        model["tagIds"] = tag_ids

    # The last entry for a person decides its sort order; the first decides its presence.
    order_by_person: dict[EntityId, Any] = {}
    for entry in item.people or []:
        if entry is None:
            continue
        person_id = _resolve(entry.person_id, refs.person_ids)
        if person_id is None:
            continue
        order_by_person[person_id] = normalize_number(entry.sort_order)
    if order_by_person:
        people = [{"personId": person_id, "sortOrder": order} for person_id, order in order_by_person.items()]
        model["people"] = sorted(people, key=_people_order_key)
    return model


def build_person_model(person: RawPerson, refs: ReferenceSets) -> dict[str, Any]:
    model: dict[str, Any] = {
        "id": _require_id(person.id, "person"),
        "name": person.name,
        "contentIds": sorted_ids(person.content_ids, refs.content_ids),
    }
    if person.description:
        model["description"] = person.description
    if person.pronouns:
        model["pronouns"] = person.pronouns
    if person.title:
        model["title"] = person.title
    if person.affiliations:
        model["affiliations"] = person.affiliations
    if person.avatar is not None and person.avatar.url:
        model["avatarUrl"] = person.avatar.url
    if person.links:
        model["links"] = person.links
    return model


def build_location_model(location: RawLocation) -> dict[str, Any]:
    return {
        "id": _require_id(location.id, "location"),
        "name": location.name,
        "shortName": location.short_name,
        # Parent links are kept even when the parent is absent from this snapshot.
        "parentId": normalize_id(location.parent_id),
    }


def build_organization_model(org: RawOrganization, refs: ReferenceSets) -> dict[str, Any]:
    model: dict[str, Any] = {
        "id": _require_id(org.id, "organization"),
        "name": org.name,
        "description": org.description if org.description is not None else ORGANIZATION_DESCRIPTION_PLACEHOLDER,
        "links": org.links or [],
        "tagIdAsOrganizer": normalize_id(org.tag_id_as_organizer),
    }
    if org.logo is not None and org.logo.url:
        model["logoUrl"] = org.logo.url
    tag_ids = sorted_ids(org.tag_ids, refs.tag_ids)
    if tag_ids:
        model["tagIds"] = tag_ids
    return model


def build_tag_models(tag_types: list[RawTagType]) -> list[dict[str, Any]]:
    tags: list[dict[str, Any]] = []
    for group in tag_types:
        group_id = normalize_id(group.id)
        for tag in group.tags or []:
            if tag is None:
                continue
            tags.append(
                {
                    "id": _require_id(tag.id, "tag"),
                    "label": tag.label,
                    "colorBackground": tag.color_background,
                    "colorForeground": tag.color_foreground,
                    "sortOrder": normalize_number(tag.sort_order),
                    "tagTypeId": group_id,
                }
            )
    return sorted(tags, key=tag_sort_key)


def build_tag_type_model(tag_type: RawTagType) -> dict[str, Any]:
    return {
        "id": _require_id(tag_type.id, "tag type"),
        "label": tag_type.label,
        "category": tag_type.category,
        "sortOrder": normalize_number(tag_type.sort_order),
        "isBrowsable": bool(tag_type.is_browsable),
    }


def build_article_model(article: RawArticle) -> dict[str, Any]:
    return {
        "id": _require_id(article.id, "article"),
        "name": article.name,
        "text": article.text,
        "updatedAtMs": resolve_updated_at_ms(article),
    }


def build_document_model(document: RawDocument) -> dict[str, Any]:
    model: dict[str, Any] = {
        "id": _require_id(document.id, "document"),
        "titleText": document.title_text,
        "bodyText": document.body_text,
    }
    updated_at_ms = resolve_updated_at_ms(document)
    if updated_at_ms is not None:
        model["updatedAtMs"] = updated_at_ms
    return model


def menu_item_sort_key(item: dict[str, Any]) -> tuple[Any, ...]:
    sort_order = item.get("sortOrder")
    return (
        math.inf if sort_order is None else sort_order,
        collation_key(item.get("titleText")),
        item["id"],
    )


def build_menu_item_model(item: RawMenuItem) -> dict[str, Any]:
    return {
        "id": normalize_id(item.id),
        "titleText": item.title_text,
        "function": item.function,
        "sortOrder": normalize_number(item.sort_order),
        "documentId": normalize_id(item.document_id),
        "menuId": normalize_id(item.menu_id),
        "appliedTagIds": sorted_ids(item.applied_tag_ids),
        "googleMaterialSymbol": item.google_materialsymbol,
        "appleSfSymbol": item.apple_sfsymbol,
        "prohibitTagFilter": item.prohibit_tag_filter == "Y",
    }


def build_menu_model(menu: RawMenu) -> dict[str, Any]:
    items = [build_menu_item_model(item) for item in menu.items or [] if item is not None]
    items = [item for item in items if item["id"] is not None]
    return {
        "id": _require_id(menu.id, "menu"),
        "titleText": menu.title_text,
        "items": sorted(items, key=menu_item_sort_key),
    }


def build_entities(collections: RawCollections) -> Entities:
    """Shape every raw collection into its canonical entity store.

    Reference sets are computed once up front; every foreign key is resolved
    against them and stored as ``None`` when it does not resolve.
    """
    refs = ReferenceSets.from_collections(collections)
    return Entities(
        articles=EntityStore.from_records(build_article_model(article) for article in collections.articles),
        content=EntityStore.from_records(build_content_model(item, refs) for item in collections.content),
        documents=EntityStore.from_records(build_document_model(document) for document in collections.documents),
        events=EntityStore.from_records(build_event_model(event, refs) for event in collections.events),
        locations=EntityStore.from_records(build_location_model(location) for location in collections.locations),
        menus=EntityStore.from_records(build_menu_model(menu) for menu in collections.menus),
        organizations=EntityStore.from_records(
            build_organization_model(org, refs) for org in collections.organizations
        ),
        people=EntityStore.from_records(build_person_model(person, refs) for person in collections.speakers),
        tag_types=EntityStore.from_records(build_tag_type_model(tag_type) for tag_type in collections.tagtypes),
        tags=EntityStore.from_records(build_tag_models(collections.tagtypes)),
    )
