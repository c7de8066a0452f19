from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from confsnap.fetch import RawSnapshot
from confsnap.schemas import COLLECTIONS, RawCollections, shape_collections


def _conference() -> dict[str, Any]:
    return {"code": "TESTCON", "name": "Test Con", "timezone": "America/Los_Angeles"}


def _collections() -> dict[str, list[Any]]:
    return {
        "articles": [
            {
                "id": 1,
                "name": "Welcome",
                "text": "Hello   world  ",
                "updated_at": {"seconds": 1723000000, "nanos": 0},
            }
        ],
        "content": [
            {
                "id": 300,
                "title": "Hacking Things",
                "tag_ids": [5, 3, 3, 42],
                "people": [
                    {"person_id": 101, "sort_order": 2},
                    {"person_id": 100, "sort_order": 1},
                    {"person_id": 555, "sort_order": 0},
                ],
                "sessions": [{"session_id": 201}, {"session_id": 200}],
            },
            {"id": 301, "title": "Another talk", "tag_ids": [], "people": [], "sessions": []},
        ],
        "documents": [
            {"id": 60, "title_text": "Code of Conduct", "body_text": "Be nice", "updated_at": {"seconds": 1723000000}},
            {"id": 61, "title_text": "FAQ", "body_text": "Answers", "updated_tsz": "2024-08-08T00:00:00Z"},
            {"id": 62, "title_text": "Old notes", "body_text": "Stale"},
        ],
        "events": [
            {
                "id": 201,
                "title": "Hacking Things (repeat)",
                "content_id": 300,
                "begin_tsz": "2025-08-08T17:00:00Z",
                "end_tsz": "2025-08-08T18:00:00Z",
                "location": {"id": 2, "name": "Track 2"},
                "speakers": [{"id": 100, "name": "Zoë Adams"}],
                "people": [{"person_id": 101, "sort_order": 1}, {"person_id": 100}],
                "tag_ids": [5, 3],
                "type": {"color": "#abcdef", "name": "Talk"},
            },
            {
                "id": 200,
                "title": "Hacking Things",
                "content_id": 300,
                "begin_tsz": "2025-08-08T16:00:00Z",
                "end_tsz": "2025-08-08T17:00:00Z",
                "location_id": 99,
                "speakers": [{"id": 101}],
                "tag_ids": [3],
                "type": {"color": "#abcdef"},
            },
        ],
        "locations": [
            {"id": 2, "name": "Track 2", "short_name": "T2", "parent_id": 1},
            {"id": 1, "name": "Main Hall", "short_name": "MH", "parent_id": None},
        ],
        "menus": [
            {
                "id": 900,
                "title_text": "Home",
                "items": [
                    {"id": 1, "title_text": "Schedule", "function": "schedule", "sort_order": 2, "applied_tag_ids": [5, 3]},
                    {
                        "id": 2,
                        "title_text": "Docs",
                        "function": "document",
                        "sort_order": 1,
                        "document_id": 60,
                        "google_materialsymbol": "article",
                    },
                    {"id": 3, "title_text": "", "function": "hidden", "sort_order": 0},
                ],
            },
            {
                "id": 901,
                "title_text": "More",
                "items": [
                    {
                        "id": 4,
                        "title_text": "FAQ",
                        "function": "document",
                        "sort_order": 1,
                        "document_id": 61,
                        "prohibit_tag_filter": "Y",
                    }
                ],
            },
        ],
        "organizations": [
            {"id": 50, "name": "Alpha Village", "tag_ids": [7], "logo": {"url": "https://example.org/alpha.png"}},
            {"id": 51, "name": "beta Village", "tag_ids": [7], "description": "Beta"},
            {"id": 52, "name": "Gamma", "tag_ids": []},
        ],
        "speakers": [
            {
                "id": 100,
                "name": "Zoë Adams",
                "content_ids": [300, 999],
                "title": "Researcher",
                "pronouns": "she/her",
                "affiliations": [],
                "avatar": {"url": "https://example.org/zoe.png"},
                "links": [],
            },
            {"id": 101, "name": "bob Brown", "content_ids": [300]},
        ],
        "tagtypes": [
            {
                "id": 10,
                "label": "Topics",
                "category": "content",
                "sort_order": 1,
                "is_browsable": True,
                "tags": [
                    {"id": 5, "label": "AI", "color_background": "#000", "color_foreground": "#fff", "sort_order": 2},
                    {"id": 3, "label": "Bio", "color_background": "#111", "color_foreground": "#eee", "sort_order": 1},
                ],
            },
            {
                "id": 20,
                "label": "Orgs",
                "category": "orga",
                "sort_order": 2,
                "is_browsable": True,
                "tags": [
                    {"id": 7, "label": "Villages", "color_background": "#222", "color_foreground": "#ddd", "sort_order": 0}
                ],
            },
        ],
    }


@pytest.fixture
def raw_conference() -> dict[str, Any]:
    return _conference()


@pytest.fixture
def raw_collections() -> dict[str, list[Any]]:
    return _collections()


@pytest.fixture
def raw_snapshot() -> RawSnapshot:
    return RawSnapshot(conference=_conference(), collections=_collections())


@pytest.fixture
def shaped_collections() -> RawCollections:
    return shape_collections(_collections())


@pytest.fixture
def make_collections() -> Callable[..., RawCollections]:
    """Shape a snapshot where every collection not given is empty."""

    def factory(**overrides: list[Any]) -> RawCollections:
        data: dict[str, list[Any]] = {name: [] for name in COLLECTIONS}
        data.update(overrides)
        return shape_collections(data)

    return factory


@pytest.fixture
def raw_snapshot_dir(tmp_path: Path) -> Path:
    root = tmp_path / "raw"
    root.mkdir()
    (root / "conference.json").write_text(json.dumps(_conference()), encoding="utf-8")
    for name, records in _collections().items():
        (root / f"{name}.json").write_text(json.dumps(records), encoding="utf-8")
    return root
