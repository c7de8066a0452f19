from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from typing import Any

from confsnap.identifiers import EntityId, normalize_id, uniq_and_filter_ids
from confsnap.schemas import RawCollections
from confsnap.timezones import is_valid_time_zone, resolve_event_begin_ms, resolve_event_end_ms


@dataclass(frozen=True)
class ValidationSummary:
    timezone: str | None
    invalid_timezone: bool = False
    missing_event_locations: int = 0
    missing_event_people: int = 0
    missing_event_tags: int = 0
    missing_event_content: int = 0
    missing_event_begin: int = 0
    missing_event_end: int = 0
    invalid_event_ranges: int = 0
    missing_content_tags: int = 0
    missing_content_people: int = 0
    warnings: tuple[str, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return not self.warnings

    def counts(self) -> dict[str, int]:
        return {
            "missingEventLocations": self.missing_event_locations,
            "missingEventPeople": self.missing_event_people,
            "missingEventTags": self.missing_event_tags,
            "missingEventContent": self.missing_event_content,
            "missingEventBegin": self.missing_event_begin,
            "missingEventEnd": self.missing_event_end,
            "invalidEventRanges": self.invalid_event_ranges,
            "missingContentTags": self.missing_content_tags,
            "missingContentPeople": self.missing_content_people,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "timezone": self.timezone,
            "invalidTimezone": self.invalid_timezone,
            **self.counts(),
            "warnings": list(self.warnings),
        }


WARNING_LABELS = {
    "missingEventLocations": "events missing locations",
    "missingEventPeople": "events missing people",
    "missingEventTags": "events missing tags",
    "missingEventContent": "events missing content",
    "missingEventBegin": "events missing/invalid begin",
    "missingEventEnd": "events missing/invalid end",
    "invalidEventRanges": "events begin>=end",
    "missingContentTags": "content missing tags",
    "missingContentPeople": "content missing people",
}


def count_missing_refs(values: Iterable[Any], valid: Collection[EntityId]) -> int:
    missing = 0
    for value in values:
        if value is None:
            continue
        entity_id = normalize_id(value)
        if entity_id is None or entity_id not in valid:
            missing += 1
    return missing


def validate_collections(collections: RawCollections, time_zone: Any) -> ValidationSummary:
    """Count data-quality problems in raw collections. Never raises."""
    invalid_timezone = bool(time_zone) and not is_valid_time_zone(time_zone)

    location_ids = frozenset(uniq_and_filter_ids(record.id for record in collections.locations))
    person_ids = frozenset(uniq_and_filter_ids(record.id for record in collections.speakers))
    content_ids = frozenset(uniq_and_filter_ids(record.id for record in collections.content))
    tag_ids = frozenset(
        uniq_and_filter_ids(tag.id for group in collections.tagtypes for tag in group.tags or [] if tag is not None)
    )

    counts = dict.fromkeys(WARNING_LABELS, 0)

    for event in collections.events:
        location = event.location.id if event.location is not None and event.location.id is not None else None
        if location is None:
            location = event.location_id
        location_id = normalize_id(location)
        if location_id is None or location_id not in location_ids:
            counts["missingEventLocations"] += 1

        people_refs = [speaker.id for speaker in event.speakers or [] if speaker is not None]
        people_refs.extend(person.person_id for person in event.people or [] if person is not None)
        counts["missingEventPeople"] += count_missing_refs(people_refs, person_ids)
        counts["missingEventTags"] += count_missing_refs(event.tag_ids or [], tag_ids)

        if event.content_id is not None and count_missing_refs([event.content_id], content_ids):
            counts["missingEventContent"] += 1

        begin_ms = resolve_event_begin_ms(event)
        end_ms = resolve_event_end_ms(event)
        if begin_ms is None:
            counts["missingEventBegin"] += 1
        if end_ms is None:
            counts["missingEventEnd"] += 1
        # Zero-length events count as invalid ranges too.
        if begin_ms is not None and end_ms is not None and begin_ms >= end_ms:
            counts["invalidEventRanges"] += 1

    for item in collections.content:
        counts["missingContentTags"] += count_missing_refs(item.tag_ids or [], tag_ids)
        counts["missingContentPeople"] += count_missing_refs(
            (person.person_id for person in item.people or [] if person is not None),
            person_ids,
        )

    warnings: list[str] = []
    if invalid_timezone:
        warnings.append(f'invalid timezone "{time_zone}"')
    warnings.extend(f"{WARNING_LABELS[key]}: {value}" for key, value in counts.items() if value)

    return ValidationSummary(
        timezone=time_zone if isinstance(time_zone, str) else None,
        invalid_timezone=invalid_timezone,
        missing_event_locations=counts["missingEventLocations"],
        missing_event_people=counts["missingEventPeople"],
        missing_event_tags=counts["missingEventTags"],
        missing_event_content=counts["missingEventContent"],
        missing_event_begin=counts["missingEventBegin"],
        missing_event_end=counts["missingEventEnd"],
        invalid_event_ranges=counts["invalidEventRanges"],
        missing_content_tags=counts["missingContentTags"],
        missing_content_people=counts["missingContentPeople"],
        warnings=tuple(warnings),
    )
