from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any

from confsnap.collation import base_key, id_sort_value
from confsnap.entities import Entities
from confsnap.identifiers import id_key
from confsnap.store import EntityStore, require_store
from confsnap.timezones import ZoneFormatterCache

EVENT_INDEX_NAMES = (
    "eventsByDay",
    "eventsByStartMinute",
    "eventsByLocation",
    "eventsByPerson",
    "eventsByTag",
)
CONTENT_INDEX_NAMES = ("contentByTag",)
INDEX_NAMES = EVENT_INDEX_NAMES + CONTENT_INDEX_NAMES


def _stores(entities: Entities | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(entities, Entities):
        return entities.stores()
    return entities


def event_order_key(events: EntityStore) -> Callable[[Any], tuple[Any, ...]]:
    def key(event_id: Any) -> tuple[Any, ...]:
        event = events.get(event_id) or {}
        start = event.get("beginTimestampSeconds")
        return (0 if start is None else start, id_sort_value(event_id))

    return key


def content_order_key(content: EntityStore) -> Callable[[Any], tuple[Any, ...]]:
    def key(content_id: Any) -> tuple[Any, ...]:
        item = content.get(content_id) or {}
        return (base_key(item.get("title")), id_sort_value(content_id))

    return key


def index_order_key(index_name: str, events: EntityStore, content: EntityStore) -> Callable[[Any], tuple[Any, ...]]:
    if index_name in CONTENT_INDEX_NAMES:
        return content_order_key(content)
    return event_order_key(events)


def build_indexes(
    entities: Entities | Mapping[str, Any],
    time_zone: str,
    *,
    cache: ZoneFormatterCache | None = None,
) -> dict[str, dict[str, list[Any]]]:
    """Derive the one-to-many lookup indexes over events and content.

    Day and minute buckets are calendar-local to ``time_zone``. Buckets are
    sorted once, after every member has been added.
    """
    stores = _stores(entities)
    events = require_store(stores, "events")
    content = require_store(stores, "content")
    formatter = cache if cache is not None else ZoneFormatterCache()

    buckets: dict[str, defaultdict[str, list[Any]]] = {name: defaultdict(list) for name in INDEX_NAMES}

    for event in events.records():
        event_id = event["id"]
        start_seconds = event.get("beginTimestampSeconds")
        start_ms = None if start_seconds is None else start_seconds * 1000

        day = formatter.day_key(start_ms, time_zone)
        if day:
            buckets["eventsByDay"][day].append(event_id)
        minute = formatter.minute_key(start_ms, time_zone)
        if minute:
            buckets["eventsByStartMinute"][minute].append(event_id)

        if event.get("locationId") is not None:
            buckets["eventsByLocation"][id_key(event["locationId"])].append(event_id)

        # Speaker and attendee roles collapse into one membership per person.
        person_ids = dict.fromkeys([*event.get("speakerIds", []), *event.get("personIds", [])])
        for person_id in person_ids:
            buckets["eventsByPerson"][id_key(person_id)].append(event_id)

        for tag_id in event.get("tagIds", []):
            buckets["eventsByTag"][id_key(tag_id)].append(event_id)

    for item in content.records():
        for tag_id in item.get("tagIds", []):
            buckets["contentByTag"][id_key(tag_id)].append(item["id"])

    indexes: dict[str, dict[str, list[Any]]] = {}
    for name in INDEX_NAMES:
        order = index_order_key(name, events, content)
        indexes[name] = {key: sorted(members, key=order) for key, members in sorted(buckets[name].items())}
    return indexes
