from __future__ import annotations

import concurrent.futures
import json
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from confsnap.errors import FetchError, StructuralError
from confsnap.observability import get_logger
from confsnap.schemas import COLLECTIONS, shape_conference

FIRESTORE_BASE_URL = "https://firestore.googleapis.com/v1"
FIRESTORE_PAGE_SIZE = 300
USER_AGENT = "confsnap/0.1"
TIMESTAMP_RE = re.compile(r"^(?P<base>[^.]+?)(?:\.(?P<fraction>\d+))?(?P<tz>Z|[+-]\d{2}:\d{2})$")

logger = get_logger(__name__)


class SnapshotSource(Protocol):
    def fetch_conference(self, code: str) -> dict[str, Any]: ...

    def fetch_collection(self, code: str, name: str) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class RawSnapshot:
    conference: dict[str, Any]
    collections: dict[str, list[Any]]

    def counts(self) -> dict[str, int]:
        return {name: len(records) for name, records in self.collections.items()}


def _fallback_key(record: Any) -> str:
    return json.dumps(record, sort_keys=True, ensure_ascii=False, default=str)


def sort_collection(records: list[Any]) -> list[Any]:
    """Order records with an id by the id's string form, id-less ones after them."""
    with_id: list[tuple[str, Any]] = []
    without_id: list[tuple[str, Any]] = []
    for record in records:
        record_id = record.get("id") if isinstance(record, Mapping) else None
        if record_id is None:
            without_id.append((_fallback_key(record), record))
        else:
            with_id.append((str(record_id), record))
    with_id.sort(key=lambda entry: entry[0])
    without_id.sort(key=lambda entry: entry[0])
    return [record for _, record in with_id] + [record for _, record in without_id]


def fetch_snapshot(source: SnapshotSource, code: str, *, max_workers: int = 8) -> RawSnapshot:
    """Fetch the conference record and every collection concurrently."""
    workers = max(1, min(max_workers, len(COLLECTIONS) + 1))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        conference_future = executor.submit(source.fetch_conference, code)
        futures = {name: executor.submit(source.fetch_collection, code, name) for name in COLLECTIONS}
        conference = conference_future.result()
        fetched = {name: future.result() for name, future in futures.items()}

    shape_conference(conference)
    collections: dict[str, list[Any]] = {}
    for name in COLLECTIONS:
        records = fetched[name]
        if not isinstance(records, list):
            raise StructuralError(f"collection {name} must be an array")
        collections[name] = sort_collection(records)

    snapshot = RawSnapshot(conference=dict(conference), collections=collections)
    logger.info(
        "fetched collections",
        code=conference.get("code", code),
        name=conference.get("name"),
        counts=snapshot.counts(),
    )
    return snapshot


class DirectorySource:
    """Raw snapshot files as written by an ``--emit-raw`` export."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _load(self, filename: str) -> Any:
        path = self.root / filename
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FetchError(f"raw snapshot file not found: {path.as_posix()}") from exc
        except json.JSONDecodeError as exc:
            raise FetchError(f"raw snapshot file is not valid JSON: {path.as_posix()} ({exc.msg})") from exc

    def fetch_conference(self, code: str) -> dict[str, Any]:
        conference = self._load("conference.json")
        if not isinstance(conference, dict):
            raise FetchError(f"conference.json under {self.root.as_posix()} is not an object")
        return conference

    def fetch_collection(self, code: str, name: str) -> list[dict[str, Any]]:
        return self._load(f"{name}.json")


def decode_timestamp(value: str) -> dict[str, int]:
    match = TIMESTAMP_RE.match(value.strip())
    if match is None:
        raise FetchError(f"unparseable timestampValue {value!r}")
    offset = "+00:00" if match.group("tz") == "Z" else match.group("tz")
    try:
        moment = datetime.fromisoformat(match.group("base") + offset)
    except ValueError as exc:
        raise FetchError(f"unparseable timestampValue {value!r}") from exc
    fraction = (match.group("fraction") or "").ljust(9, "0")[:9]
    return {"seconds": int(moment.timestamp()), "nanos": int(fraction)}


def decode_value(value: Mapping[str, Any]) -> Any:
    """Turn one typed Firestore REST value into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return decode_timestamp(value["timestampValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "bytesValue" in value:
        return value["bytesValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        point = value["geoPointValue"]
        return {"latitude": point.get("latitude"), "longitude": point.get("longitude")}
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise FetchError(f"unsupported Firestore value type: {sorted(value)}")


def decode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: decode_value(item) for key, item in fields.items()}


class FirestoreRestSource:
    """Read-only Firestore access over the public REST API."""

    def __init__(self, project: str, api_key: str | None = None, *, timeout: float = 30.0) -> None:
        if not project:
            raise FetchError("firestore project is required")
        self.project = project
        self.api_key = api_key
        self.timeout = timeout

    def _documents_url(self, path: str, params: dict[str, str] | None = None) -> str:
        query = dict(params or {})
        if self.api_key:
            query["key"] = self.api_key
        quoted = "/".join(urllib.parse.quote(part, safe="") for part in path.split("/"))
        url = f"{FIRESTORE_BASE_URL}/projects/{self.project}/databases/(default)/documents/{quoted}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"
        return url

    def _get_json(self, url: str) -> dict[str, Any]:
        request = urllib.request.Request(
            url,
            method="GET",
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            },
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise FetchError(f"firestore request failed with HTTP {exc.code}: {url.split('?')[0]}") from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            reason = exc.reason if isinstance(exc, urllib.error.URLError) else exc
            raise FetchError(f"firestore request failed: {reason}") from exc
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise FetchError(f"firestore returned invalid JSON: {exc.msg}") from exc
        if not isinstance(payload, dict):
            raise FetchError("firestore returned a non-object payload")
        return payload

    def fetch_conference(self, code: str) -> dict[str, Any]:
        document = self._get_json(self._documents_url(f"conferences/{code}"))
        return decode_fields(document.get("fields", {}))

    def fetch_collection(self, code: str, name: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params = {"pageSize": str(FIRESTORE_PAGE_SIZE)}
            if page_token:
                params["pageToken"] = page_token
            page = self._get_json(self._documents_url(f"conferences/{code}/{name}", params))
            records.extend(decode_fields(document.get("fields", {})) for document in page.get("documents", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                return records
