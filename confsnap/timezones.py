from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from confsnap.identifiers import normalize_number


class ZoneFormatterCache:
    """Resolved time zones keyed by name; an unknown name caches as None."""

    def __init__(self) -> None:
        self._zones: dict[str, ZoneInfo | None] = {}

    def zone(self, name: Any) -> ZoneInfo | None:
        if not isinstance(name, str) or not name.strip():
            return None
        if name not in self._zones:
            try:
                self._zones[name] = ZoneInfo(name)
            except (ZoneInfoNotFoundError, ValueError, OSError):
                self._zones[name] = None
        return self._zones[name]

    def __len__(self) -> int:
        return len(self._zones)

    def _local(self, instant_ms: int | float | None, time_zone: str) -> datetime | None:
        if instant_ms is None:
            return None
        zone = self.zone(time_zone)
        if zone is None:
            return None
        try:
            return datetime.fromtimestamp(instant_ms / 1000, tz=zone)
        except (OverflowError, OSError, ValueError):
            return None

    def day_key(self, instant_ms: int | float | None, time_zone: str) -> str | None:
        local = self._local(instant_ms, time_zone)
        return None if local is None else local.strftime("%Y-%m-%d")

    def minute_key(self, instant_ms: int | float | None, time_zone: str) -> str | None:
        local = self._local(instant_ms, time_zone)
        return None if local is None else local.strftime("%Y-%m-%dT%H:%M")


def is_valid_time_zone(name: Any) -> bool:
    return ZoneFormatterCache().zone(name) is not None


def parse_instant_ms(value: Any) -> int | None:
    """Epoch milliseconds for an ISO-8601 string or a ``{"seconds": n}`` mapping."""
    if isinstance(value, Mapping):
        seconds = normalize_number(value.get("seconds"))
        return None if seconds is None else int(seconds * 1000)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp() * 1000)


def resolve_instant_ms(*candidates: Any) -> int | None:
    for candidate in candidates:
        if candidate is None:
            continue
        instant = parse_instant_ms(candidate)
        if instant is not None:
            return instant
    return None


def resolve_event_begin_ms(event: Any) -> int | None:
    return resolve_instant_ms(event.begin_tsz, event.begin, event.begin_timestamp)


def resolve_event_end_ms(event: Any) -> int | None:
    return resolve_instant_ms(event.end_tsz, event.end, event.end_timestamp)


def resolve_updated_at_ms(record: Any) -> int | None:
    updated_at = getattr(record, "updated_at", None)
    if isinstance(updated_at, Mapping) and updated_at.get("seconds") is not None:
        return parse_instant_ms(updated_at)
    if isinstance(updated_at, str):
        return parse_instant_ms(updated_at)
    for field_name in ("updated_tsz", "updated_at_str"):
        value = getattr(record, field_name, None)
        if isinstance(value, str):
            return parse_instant_ms(value)
    return None


def utc_timestamp(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")
