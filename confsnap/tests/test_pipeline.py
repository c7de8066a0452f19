from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from confsnap.config import BuildConfig
from confsnap import pipeline
from confsnap.errors import BuildError, StrictValidationError, VerificationError, format_issue_preview
from confsnap.fetch import DirectorySource
from confsnap.pipeline import build_artifacts, build_manifest, prepare_collections, run_export, run_validate_source
from confsnap.schemas import shape_conference

BUILT_AT = datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC)


def _read_tree(root: Path) -> dict[str, bytes]:
    return {path.relative_to(root).as_posix(): path.read_bytes() for path in sorted(root.rglob("*")) if path.is_file()}


def test_build_manifest_uses_utc_build_timestamp(raw_conference) -> None:
    manifest = build_manifest(shape_conference(raw_conference), build_timestamp=BUILT_AT)

    assert manifest == {
        "code": "TESTCON",
        "name": "Test Con",
        "timezone": "America/Los_Angeles",
        "schemaVersion": 1,
        "buildTimestamp": "2025-01-02T03:04:05Z",
    }


def test_prepare_collections_sanitizes_before_shaping(raw_snapshot) -> None:
    collections = prepare_collections(raw_snapshot)

    assert collections.articles[0].text == "Hello world"


def test_build_artifacts_runs_every_stage(raw_snapshot) -> None:
    artifacts = build_artifacts(raw_snapshot, verify=True, build_timestamp=BUILT_AT)

    assert artifacts.entities.counts()["events"] == 2
    assert set(artifacts.indexes) >= {"eventsByDay", "eventsByLocation", "contentByTag"}
    assert "searchData" in artifacts.views
    assert [entry["title"] for entry in artifacts.site_menu["primary"]] == ["Docs", "Schedule"]
    assert artifacts.tag_ids_by_label["byLabel"]["ai"] == 5
    assert artifacts.validation.ok is False


def test_run_export_writes_dataset(tmp_path: Path, raw_snapshot_dir: Path) -> None:
    config = BuildConfig(output_root=(tmp_path / "out").as_posix(), verify=True, fetch_workers=2)

    result = run_export(DirectorySource(raw_snapshot_dir), " TESTCON ", config=config, build_timestamp=BUILT_AT)

    output_dir = tmp_path / "out" / "testcon"
    assert result["ok"] is True
    assert result["code"] == "TESTCON"
    assert result["output_dir"] == output_dir.as_posix()
    assert result["files_written"] == 26
    assert result["raw_emitted"] is False
    assert result["verified"] is True
    assert result["entities"]["organizations"] == 3
    assert result["validation"]["missingEventLocations"] == 1
    assert result["summary"]["warnings"] == []
    assert result["summary"]["sectionCounts"]["views"] == 7

    manifest = json.loads((output_dir / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["buildTimestamp"] == "2025-01-02T03:04:05Z"
    assert (output_dir / "derived" / "siteMenu.json").is_file()
    assert not (output_dir / "raw").exists()


def test_run_export_emits_raw_collections_unsanitized(tmp_path: Path, raw_snapshot_dir: Path) -> None:
    config = BuildConfig(output_root=tmp_path.as_posix(), emit_raw=True)

    result = run_export(DirectorySource(raw_snapshot_dir), "TESTCON", config=config, build_timestamp=BUILT_AT)

    raw_dir = tmp_path / "testcon" / "raw"
    assert result["files_written"] == 36
    assert result["summary"]["sectionCounts"]["raw"] == 10
    articles = json.loads((raw_dir / "articles.json").read_text(encoding="utf-8"))
    assert articles[0]["text"] == "Hello   world  "
    assert json.loads((raw_dir / "conference.json").read_text(encoding="utf-8"))["code"] == "TESTCON"


def test_run_export_strict_mode_writes_nothing(tmp_path: Path, raw_snapshot_dir: Path) -> None:
    config = BuildConfig(output_root=tmp_path.as_posix(), strict=True)

    with pytest.raises(StrictValidationError, match="events missing locations: 1") as exc_info:
        run_export(DirectorySource(raw_snapshot_dir), "TESTCON", config=config)

    assert exc_info.value.summary.missing_content_people == 1
    assert not (tmp_path / "testcon").exists()


def test_run_export_requires_a_conference_code(tmp_path: Path, raw_snapshot_dir: Path) -> None:
    with pytest.raises(BuildError, match="conference code is required"):
        run_export(DirectorySource(raw_snapshot_dir), "  ", config=BuildConfig(output_root=tmp_path.as_posix()))


def test_repeated_exports_are_byte_identical(tmp_path: Path, raw_snapshot_dir: Path) -> None:
    first = BuildConfig(output_root=(tmp_path / "a").as_posix())
    second = BuildConfig(output_root=(tmp_path / "b").as_posix(), fetch_workers=1)

    run_export(DirectorySource(raw_snapshot_dir), "TESTCON", config=first, build_timestamp=BUILT_AT)
    run_export(DirectorySource(raw_snapshot_dir), "TESTCON", config=second, build_timestamp=BUILT_AT)

    assert _read_tree(tmp_path / "a" / "testcon") == _read_tree(tmp_path / "b" / "testcon")


def test_run_validate_source_reports_counts(raw_snapshot_dir: Path) -> None:
    result = run_validate_source(DirectorySource(raw_snapshot_dir), "TESTCON")

    assert result["ok"] is False
    assert result["code"] == "TESTCON"
    assert result["missingContentTags"] == 1
    assert result["warnings"] == [
        "events missing locations: 1",
        "content missing tags: 1",
        "content missing people: 1",
    ]


def test_failed_verification_writes_nothing(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, raw_snapshot_dir: Path
) -> None:
    monkeypatch.setattr(pipeline, "build_indexes", lambda entities, time_zone: {})
    config = BuildConfig(output_root=tmp_path.as_posix(), verify=True)

    with pytest.raises(VerificationError) as exc_info:
        run_export(DirectorySource(raw_snapshot_dir), "TESTCON", config=config)

    errors = exc_info.value.errors
    assert len(errors) == 6
    assert errors[0] == "indexes/eventsByDay missing or not a map"
    message = str(exc_info.value)
    assert message.startswith("verify failed (6 issues): indexes/eventsByDay missing or not a map; ")
    assert message.endswith("indexes/eventsByTag missing or not a map (+1 more)")
    assert "contentByTag" not in message
    assert not (tmp_path / "testcon").exists()
    assert not (tmp_path / ".testcon.staging").exists()


def test_verification_preview_size_is_configurable(monkeypatch: pytest.MonkeyPatch, raw_snapshot) -> None:
    monkeypatch.setattr(pipeline, "build_indexes", lambda entities, time_zone: {})

    expected = r"^verify failed \(6 issues\): indexes/eventsByDay missing or not a map \(\+5 more\)$"
    with pytest.raises(VerificationError, match=expected):
        build_artifacts(raw_snapshot, verify=True, verify_preview=1)


def test_format_issue_preview() -> None:
    assert format_issue_preview([], label="verify failed") == "verify failed (0 issues)"
    assert format_issue_preview(["a", "b"], preview=5) == "issues (2 issues): a; b"
    assert format_issue_preview(["a", "b", "c"], preview=0) == "issues (3 issues) (+3 more)"
