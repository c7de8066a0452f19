from __future__ import annotations

import json
from pathlib import Path

import pytest

from confsnap.entities import build_entities
from confsnap.errors import StructuralError
from confsnap.indexes import build_indexes
from confsnap.output import write_outputs
from confsnap.pipeline import artifact_files, build_artifacts
from confsnap.verify import load_output_dir, summarize_output_dir, verify_output_dir, verify_outputs
from confsnap.views import build_views


def _build(collections) -> tuple[dict, dict, dict]:
    entities = build_entities(collections)
    payloads = {name: store.as_dict() for name, store in entities}
    return payloads, build_indexes(entities, "America/Los_Angeles"), build_views(entities)


def test_verify_outputs_accepts_a_fresh_build(shaped_collections) -> None:
    entities = build_entities(shaped_collections)
    indexes = build_indexes(entities, "America/Los_Angeles")
    views = build_views(entities)

    assert verify_outputs(entities, indexes, views) == []


def test_verify_outputs_flags_store_problems(shaped_collections) -> None:
    payloads, indexes, views = _build(shaped_collections)
    payloads["events"]["allIds"] = [201, 200]
    payloads["people"]["byId"]["999"] = {"id": 999}
    payloads["locations"]["byId"]["2"]["id"] = 3
    del payloads["menus"]

    errors = verify_outputs(payloads, indexes, views)

    assert "entities/events.allIds not sorted at 200" in errors
    assert "entities/people.byId has keys not in allIds: 999" in errors
    assert "entities/locations.byId id mismatch for 2" in errors
    assert "entities/menus missing allIds/byId" in errors


def test_verify_outputs_flags_dangling_references_and_empty_optionals(shaped_collections) -> None:
    payloads, indexes, views = _build(shaped_collections)
    payloads["events"]["byId"]["201"]["locationId"] = 77
    payloads["content"]["byId"]["300"]["tagIds"] = [5, 3]
    payloads["people"]["byId"]["101"]["links"] = []

    errors = verify_outputs(payloads, indexes, views)

    assert "entities/events.byId[201].locationId references missing locations 77" in errors
    assert "entities/content.byId[300].tagIds not sorted/unique" in errors
    assert "entities/people.byId[101].links present but empty" in errors


def test_verify_outputs_flags_unsorted_index_buckets(shaped_collections) -> None:
    payloads, indexes, views = _build(shaped_collections)
    indexes["eventsByTag"]["3"] = [201, 200]
    indexes["eventsByPerson"]["100"] = [201, 12345]
    del indexes["contentByTag"]

    errors = verify_outputs(payloads, indexes, views)

    assert "indexes/eventsByTag.3 not sorted" in errors
    assert "indexes/eventsByPerson.100 references missing ids [12345]" in errors
    assert "indexes/contentByTag missing or not a map" in errors


def test_verify_outputs_flags_view_leaks_and_ordering(shaped_collections) -> None:
    payloads, indexes, views = _build(shaped_collections)
    views["peopleCards"][0]["email"] = "leak@example.org"
    views["contentCards"].reverse()
    views["eventCardsById"]["201"]["tags"].reverse()
    del views["eventCardsById"]["200"]["speakers"]
    views["organizationsCards"]["7"].append(dict(views["organizationsCards"]["7"][0]))
    views["searchData"][0]["normalizedText"] = "stale"
    del views["documentsList"]

    errors = verify_outputs(payloads, indexes, views)

    assert "views/peopleCards[0] has extra keys email" in errors
    assert "views/contentCards not sorted" in errors
    assert "views/eventCardsById.201.tags not sorted" in errors
    assert "views/eventCardsById.200 missing speakers" in errors
    assert "views/organizationsCards.7 has duplicate id in group" in errors
    assert "views/searchData.organization.50 normalizedText out of date" in errors
    assert "views/documentsList missing" in errors


def test_written_output_round_trips_through_the_verifier(tmp_path: Path, raw_snapshot) -> None:
    artifacts = build_artifacts(raw_snapshot, verify=True)
    output_dir = tmp_path / "out" / "testcon"
    write_outputs(output_dir, artifact_files(artifacts))

    loaded = load_output_dir(output_dir)

    assert sorted(loaded.entities) == sorted(name for name, _ in artifacts.entities)
    assert loaded.manifest["code"] == "TESTCON"
    assert verify_outputs(loaded.entities, loaded.indexes, loaded.views) == []
    assert verify_output_dir(output_dir) == []


def test_load_output_dir_rejects_missing_or_corrupt_output(tmp_path: Path) -> None:
    with pytest.raises(StructuralError, match="output directory not found"):
        load_output_dir(tmp_path / "missing")

    (tmp_path / "views").mkdir()
    (tmp_path / "views" / "peopleCards.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(StructuralError, match="invalid JSON"):
        load_output_dir(tmp_path)


def test_summarize_output_dir_counts_sections_and_warns(tmp_path: Path, raw_snapshot) -> None:
    output_dir = tmp_path / "testcon"
    write_outputs(output_dir, artifact_files(build_artifacts(raw_snapshot)))

    summary = summarize_output_dir(output_dir, emit_raw=True)

    assert summary.section_counts == {"entities": 10, "indexes": 6, "views": 7, "derived": 2, "raw": 0}
    assert summary.total_files == 26
    assert summary.warnings == ["raw missing/empty"]
    assert len(summary.largest_files) == 5
    assert summary.as_dict()["largestFiles"][0]["name"].endswith(".json")

    (output_dir / "manifest.json").unlink()
    assert summarize_output_dir(output_dir).warnings == ["manifest missing"]


def test_written_files_are_compact_sorted_json(tmp_path: Path, raw_snapshot) -> None:
    output_dir = tmp_path / "testcon"
    write_outputs(output_dir, artifact_files(build_artifacts(raw_snapshot)))

    text = (output_dir / "entities" / "articles.json").read_text(encoding="utf-8")

    assert text == json.dumps(json.loads(text), sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    assert json.loads(text)["byId"]["1"]["text"] == "Hello world"
