from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from confsnap.errors import StructuralError

COLLECTIONS = (
    "articles",
    "content",
    "documents",
    "events",
    "locations",
    "menus",
    "organizations",
    "speakers",
    "tagtypes",
)


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RawRecord(BaseModel):
    """Loosely-typed upstream record.

    Identifier and timestamp fields stay ``Any`` on purpose: only the normalizers
    in ``confsnap.identifiers`` and ``confsnap.timezones`` interpret them.
    """

    model_config = ConfigDict(extra="allow")


def nested_or_none(value: Any) -> Any:
    """A nested record that is not a mapping is treated as absent."""
    if isinstance(value, (Mapping, BaseModel)):
        return value
    return None


def nested_entries(value: Any) -> list[Any] | None:
    if not isinstance(value, list):
        return None
    return [entry for entry in value if isinstance(entry, (Mapping, BaseModel))]


def list_or_none(value: Any) -> list[Any] | None:
    return value if isinstance(value, list) else None


class RawMedia(RawRecord):
    url: Any = None


class RawTag(RawRecord):
    id: Any = None
    label: Any = None
    color_background: Any = None
    color_foreground: Any = None
    sort_order: Any = None


class RawTagType(RawRecord):
    id: Any = None
    label: Any = None
    category: Any = None
    sort_order: Any = None
    is_browsable: Any = None
    tags: list[RawTag | None] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def drop_malformed_tags(cls, value: Any) -> list[Any] | None:
        return nested_entries(value)


class RawEventSpeaker(RawRecord):
    id: Any = None
    name: Any = None


class RawPersonRef(RawRecord):
    person_id: Any = None
    sort_order: Any = None


class RawEventLocation(RawRecord):
    id: Any = None
    name: Any = None


class RawEventType(RawRecord):
    color: Any = None
    name: Any = None


class RawEvent(RawRecord):
    id: Any = None
    title: Any = None
    content_id: Any = None
    begin_tsz: Any = None
    end_tsz: Any = None
    begin: Any = None
    end: Any = None
    begin_timestamp: Any = None
    end_timestamp: Any = None
    location: RawEventLocation | None = None
    location_id: Any = None
    speakers: list[RawEventSpeaker | None] | None = None
    people: list[RawPersonRef | None] | None = None
    tag_ids: list[Any] | None = None
    event_type: RawEventType | None = Field(alias="type", default=None)

    @field_validator("location", "event_type", mode="before")
    @classmethod
    def drop_malformed_nested(cls, value: Any) -> Any:
        return nested_or_none(value)

    @field_validator("speakers", "people", mode="before")
    @classmethod
    def drop_malformed_refs(cls, value: Any) -> list[Any] | None:
        return nested_entries(value)

    @field_validator("tag_ids", mode="before")
    @classmethod
    def drop_malformed_lists(cls, value: Any) -> list[Any] | None:
        return list_or_none(value)


class RawContentSession(RawRecord):
    session_id: Any = None


class RawContent(RawRecord):
    id: Any = None
    title: Any = None
    tag_ids: list[Any] | None = None
    people: list[RawPersonRef | None] | None = None
    sessions: list[RawContentSession | None] | None = None

    @field_validator("people", "sessions", mode="before")
    @classmethod
    def drop_malformed_refs(cls, value: Any) -> list[Any] | None:
        return nested_entries(value)

    @field_validator("tag_ids", mode="before")
    @classmethod
    def drop_malformed_lists(cls, value: Any) -> list[Any] | None:
        return list_or_none(value)


class RawPerson(RawRecord):
    id: Any = None
    name: Any = None
    content_ids: list[Any] | None = None
    description: Any = None
    pronouns: Any = None
    title: Any = None
    affiliations: list[Any] | None = None
    avatar: RawMedia | None = None
    links: list[Any] | None = None

    @field_validator("avatar", mode="before")
    @classmethod
    def drop_malformed_avatar(cls, value: Any) -> Any:
        return nested_or_none(value)

    @field_validator("content_ids", "affiliations", "links", mode="before")
    @classmethod
    def drop_malformed_lists(cls, value: Any) -> list[Any] | None:
        return list_or_none(value)


class RawLocation(RawRecord):
    id: Any = None
    name: Any = None
    short_name: Any = None
    parent_id: Any = None


class RawOrganization(RawRecord):
    id: Any = None
    name: Any = None
    description: Any = None
    links: list[Any] | None = None
    tag_id_as_organizer: Any = None
    logo: RawMedia | None = None
    tag_ids: list[Any] | None = None

    @field_validator("logo", mode="before")
    @classmethod
    def drop_malformed_logo(cls, value: Any) -> Any:
        return nested_or_none(value)

    @field_validator("links", "tag_ids", mode="before")
    @classmethod
    def drop_malformed_lists(cls, value: Any) -> list[Any] | None:
        return list_or_none(value)


class RawArticle(RawRecord):
    id: Any = None
    name: Any = None
    text: Any = None
    updated_at: Any = None
    updated_tsz: Any = None
    updated_at_str: Any = None


class RawDocument(RawRecord):
    id: Any = None
    title_text: Any = None
    body_text: Any = None
    updated_at: Any = None
    updated_tsz: Any = None
    updated_at_str: Any = None


class RawMenuItem(RawRecord):
    id: Any = None
    title_text: Any = None
    function: Any = None
    sort_order: Any = None
    document_id: Any = None
    menu_id: Any = None
    applied_tag_ids: list[Any] | None = None
    google_materialsymbol: Any = None
    apple_sfsymbol: Any = None
    prohibit_tag_filter: Any = None

    @field_validator("applied_tag_ids", mode="before")
    @classmethod
    def drop_malformed_lists(cls, value: Any) -> list[Any] | None:
        return list_or_none(value)


class RawMenu(RawRecord):
    id: Any = None
    title_text: Any = None
    items: list[RawMenuItem | None] | None = None

    @field_validator("items", mode="before")
    @classmethod
    def drop_malformed_items(cls, value: Any) -> list[Any] | None:
        return nested_entries(value)


class ConferenceRecord(RawRecord):
    code: Any = None
    name: Any = None
    timezone: Any = None


MODEL_BY_COLLECTION: dict[str, type[RawRecord]] = {
    "articles": RawArticle,
    "content": RawContent,
    "documents": RawDocument,
    "events": RawEvent,
    "locations": RawLocation,
    "menus": RawMenu,
    "organizations": RawOrganization,
    "speakers": RawPerson,
    "tagtypes": RawTagType,
}


@dataclass(frozen=True)
class RawCollections:
    articles: list[RawArticle]
    content: list[RawContent]
    documents: list[RawDocument]
    events: list[RawEvent]
    locations: list[RawLocation]
    menus: list[RawMenu]
    organizations: list[RawOrganization]
    speakers: list[RawPerson]
    tagtypes: list[RawTagType]

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in COLLECTIONS}


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    if location:
        return f"{location}: {error['msg']}"
    return str(error["msg"])


def shape_records(name: str, records: Any) -> list[Any]:
    if not isinstance(records, list):
        raise StructuralError(f"collection {name} must be an array")
    model_cls = MODEL_BY_COLLECTION[name]
    shaped: list[Any] = []
    for position, record in enumerate(records):
        try:
            shaped.append(model_cls.model_validate(record))
        except ValidationError as exc:
            raise StructuralError(f"{name}[{position}] schema error: {_first_error(exc)}") from exc
    return shaped


def shape_collections(data: Mapping[str, Any]) -> RawCollections:
    """Validate every required collection at the pipeline boundary."""
    if not isinstance(data, Mapping):
        raise StructuralError("raw collections must be a mapping of collection name to records")
    shaped = {name: shape_records(name, data.get(name)) for name in COLLECTIONS}
    return RawCollections(**shaped)


def shape_conference(record: Any) -> ConferenceRecord:
    try:
        conference = ConferenceRecord.model_validate(record)
    except ValidationError as exc:
        raise StructuralError(f"conference schema error: {_first_error(exc)}") from exc
    timezone = conference.timezone
    if not isinstance(timezone, str) or not timezone.strip():
        raise StructuralError("conference record is missing timezone")
    return conference
