from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from confsnap.config import BuildConfig, load_build_config
from confsnap.errors import BuildError
from confsnap.fetch import DirectorySource, FirestoreRestSource, SnapshotSource
from confsnap.observability import configure_logging, get_logger
from confsnap.pipeline import run_export, run_validate_source
from confsnap.search import search_index
from confsnap.verify import load_output_dir, verify_outputs

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Conference dataset snapshot builder")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser(
        "export",
        help="Fetch one conference and write its normalized dataset.",
    )
    export_parser.add_argument("conf", help="Conference code (e.g. DEFCON33).")
    export_parser.add_argument(
        "--source",
        default="firestore",
        choices=["firestore", "directory"],
        help="Where raw collections come from (default: firestore).",
    )
    export_parser.add_argument(
        "--source-dir",
        type=Path,
        default=None,
        help="Raw snapshot directory for --source directory.",
    )
    export_parser.add_argument(
        "--out",
        "-o",
        default=None,
        help="Output root (default: out/ht).",
    )
    export_parser.add_argument(
        "--emit-raw",
        "-r",
        action="store_true",
        help="Also write the fetched raw collections under raw/.",
    )
    export_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail the export on any validation warning.",
    )
    export_parser.add_argument(
        "--verify",
        action="store_true",
        help="Verify built stores, indexes, and views before writing.",
    )
    export_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML build configuration file.",
    )
    export_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    validate_parser = subparsers.add_parser(
        "validate",
        help="Report data-quality warnings for a raw snapshot directory.",
    )
    validate_parser.add_argument(
        "--source-dir",
        type=Path,
        required=True,
        help="Raw snapshot directory (conference.json plus one file per collection).",
    )
    validate_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    verify_parser = subparsers.add_parser(
        "verify",
        help="Re-read a written dataset and check its structural invariants.",
    )
    verify_parser.add_argument("output_dir", type=Path, help="Dataset directory (e.g. out/ht/defcon33).")
    verify_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    search_parser = subparsers.add_parser(
        "search",
        help="Substring search over a written dataset's search view.",
    )
    search_parser.add_argument("output_dir", type=Path, help="Dataset directory (e.g. out/ht/defcon33).")
    search_parser.add_argument("query", help="Search text.")
    search_parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def emit(payload: dict[str, Any], *, pretty: bool) -> None:
    if pretty:
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(json.dumps(payload, sort_keys=True))


def error_payload(exc: Exception) -> dict[str, Any]:
    return {
        "ok": False,
        "error_type": exc.__class__.__name__,
        "error": str(exc),
    }


def resolve_source(args: argparse.Namespace, config: BuildConfig) -> SnapshotSource:
    if args.source == "directory":
        if args.source_dir is None:
            raise BuildError("--source-dir is required with --source directory")
        return DirectorySource(args.source_dir)
    if not config.firestore_project:
        raise BuildError("firestore source requires CONFSNAP_FIRESTORE_PROJECT or firestore_project in config")
    return FirestoreRestSource(
        config.firestore_project,
        config.firestore_api_key,
        timeout=config.fetch_timeout,
    )


def run_export_command(args: argparse.Namespace) -> int:
    config = load_build_config(config_path=args.config)
    overrides: dict[str, Any] = {}
    if args.out is not None:
        overrides["output_root"] = args.out
    if args.emit_raw:
        overrides["emit_raw"] = True
    if args.strict:
        overrides["strict"] = True
    if args.verify:
        overrides["verify"] = True
    config = config.model_copy(update=overrides)
    configure_logging(config.log_level, json_output=config.log_json)

    try:
        result = run_export(resolve_source(args, config), args.conf, config=config)
    except BuildError as exc:
        logger.error("export failed", error=str(exc), error_type=exc.__class__.__name__)
        emit(error_payload(exc), pretty=args.pretty)
        return 1

    emit(result, pretty=args.pretty)
    return 0


def run_validate_command(args: argparse.Namespace) -> int:
    configure_logging("WARNING")
    try:
        result = run_validate_source(DirectorySource(args.source_dir), args.source_dir.name)
    except BuildError as exc:
        emit(error_payload(exc), pretty=args.pretty)
        return 1

    emit(result, pretty=args.pretty)
    return 0 if result["ok"] else 1


def run_verify_command(args: argparse.Namespace) -> int:
    try:
        loaded = load_output_dir(args.output_dir)
    except BuildError as exc:
        emit(error_payload(exc), pretty=args.pretty)
        return 1

    errors = verify_outputs(loaded.entities, loaded.indexes, loaded.views)
    result = {
        "ok": not errors,
        "output_dir": args.output_dir.as_posix(),
        "error_count": len(errors),
        "errors": errors,
    }
    emit(result, pretty=args.pretty)
    return 0 if not errors else 1


def run_search_command(args: argparse.Namespace) -> int:
    try:
        loaded = load_output_dir(args.output_dir)
    except BuildError as exc:
        emit(error_payload(exc), pretty=args.pretty)
        return 1

    entries = loaded.views.get("searchData")
    if not isinstance(entries, list):
        emit({"ok": False, "error": "views/searchData.json missing or not an array"}, pretty=args.pretty)
        return 1

    matches = search_index(entries, args.query)
    emit(
        {
            "ok": True,
            "query": args.query,
            "count": len(matches),
            "results": [{key: entry.get(key) for key in ("id", "text", "type")} for entry in matches],
        },
        pretty=args.pretty,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "export":
        return run_export_command(args)
    if args.command == "validate":
        return run_validate_command(args)
    if args.command == "verify":
        return run_verify_command(args)
    if args.command == "search":
        return run_search_command(args)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
