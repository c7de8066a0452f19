from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
import structlog

from confsnap.cli import build_parser, main


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CONFSNAP_OUTPUT_ROOT",
        "CONFSNAP_EMIT_RAW",
        "CONFSNAP_STRICT",
        "CONFSNAP_VERIFY",
        "CONFSNAP_LOG_LEVEL",
        "CONFSNAP_LOG_JSON",
        "CONFSNAP_FIRESTORE_PROJECT",
        "CONFSNAP_FIRESTORE_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


def _run(capsys: pytest.CaptureFixture[str], argv: list[str]) -> tuple[int, dict[str, Any]]:
    exit_code = main(argv)
    captured = capsys.readouterr()
    return exit_code, json.loads(captured.out)


def _export(capsys: pytest.CaptureFixture[str], source_dir: Path, out: Path, *extra: str) -> tuple[int, dict[str, Any]]:
    return _run(
        capsys,
        ["export", "TESTCON", "--source", "directory", "--source-dir", str(source_dir), "--out", str(out), *extra],
    )


def test_export_parser_defaults() -> None:
    args = build_parser().parse_args(["export", "DEFCON33"])

    assert args.command == "export"
    assert args.conf == "DEFCON33"
    assert args.source == "firestore"
    assert args.emit_raw is False
    assert args.strict is False
    assert args.verify is False


def test_export_command_writes_and_reports(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, raw_snapshot_dir: Path, clean_env: None
) -> None:
    exit_code, payload = _export(capsys, raw_snapshot_dir, tmp_path / "out", "--verify", "-r")

    assert exit_code == 0
    assert payload["ok"] is True
    assert payload["verified"] is True
    assert payload["raw_emitted"] is True
    assert (tmp_path / "out" / "testcon" / "raw" / "events.json").is_file()


def test_export_command_strict_failure_is_reported_as_json(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, raw_snapshot_dir: Path, clean_env: None
) -> None:
    exit_code, payload = _export(capsys, raw_snapshot_dir, tmp_path / "out", "--strict")

    assert exit_code == 1
    assert payload["ok"] is False
    assert payload["error_type"] == "StrictValidationError"
    assert "events missing locations: 1" in payload["error"]
    assert not (tmp_path / "out" / "testcon").exists()


def test_export_command_needs_a_source(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, clean_env: None
) -> None:
    exit_code, payload = _run(capsys, ["export", "TESTCON", "--out", str(tmp_path)])

    assert exit_code == 1
    assert payload["error_type"] == "BuildError"
    assert "CONFSNAP_FIRESTORE_PROJECT" in payload["error"]


def test_verify_and_search_commands_read_written_output(
    capsys: pytest.CaptureFixture[str], tmp_path: Path, raw_snapshot_dir: Path, clean_env: None
) -> None:
    _export(capsys, raw_snapshot_dir, tmp_path / "out")
    output_dir = tmp_path / "out" / "testcon"

    exit_code, payload = _run(capsys, ["verify", str(output_dir)])
    assert exit_code == 0
    assert payload == {"ok": True, "output_dir": output_dir.as_posix(), "error_count": 0, "errors": []}

    exit_code, payload = _run(capsys, ["search", str(output_dir), "zoe"])
    assert exit_code == 0
    assert payload["count"] == 1
    assert payload["results"] == [{"id": 100, "text": "Zoë Adams", "type": "person"}]

    events_path = output_dir / "entities" / "events.json"
    events = json.loads(events_path.read_text(encoding="utf-8"))
    events["allIds"] = list(reversed(events["allIds"]))
    events_path.write_text(json.dumps(events), encoding="utf-8")

    exit_code, payload = _run(capsys, ["verify", str(output_dir)])
    assert exit_code == 1
    assert payload["ok"] is False
    assert "entities/events.allIds not sorted at 200" in payload["errors"]


def test_verify_command_reports_missing_directory(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    exit_code, payload = _run(capsys, ["verify", str(tmp_path / "absent")])

    assert exit_code == 1
    assert payload["error_type"] == "StructuralError"


def test_validate_command_exits_nonzero_on_warnings(
    capsys: pytest.CaptureFixture[str], raw_snapshot_dir: Path
) -> None:
    exit_code, payload = _run(capsys, ["validate", "--source-dir", str(raw_snapshot_dir)])

    assert exit_code == 1
    assert payload["ok"] is False
    assert payload["code"] == "TESTCON"
    assert payload["missingEventLocations"] == 1
