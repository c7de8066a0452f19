from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from confsnap.config import BuildConfig
from confsnap.entities import Entities, build_entities
from confsnap.errors import BuildError, StrictValidationError, VerificationError
from confsnap.fetch import RawSnapshot, SnapshotSource, fetch_snapshot
from confsnap.indexes import build_indexes
from confsnap.menus import build_site_menu
from confsnap.observability import bind_context, clear_context, get_logger
from confsnap.output import OutputFile, sanitize_strings_deep, write_outputs
from confsnap.schemas import ConferenceRecord, RawCollections, shape_collections, shape_conference
from confsnap.tag_labels import build_tag_ids_by_label
from confsnap.timezones import utc_timestamp
from confsnap.validate import ValidationSummary, validate_collections
from confsnap.verify import summarize_output_dir, verify_outputs
from confsnap.views import build_views

SCHEMA_VERSION = 1

logger = get_logger(__name__)


@dataclass(frozen=True)
class BuildArtifacts:
    conference: ConferenceRecord
    validation: ValidationSummary
    entities: Entities
    indexes: dict[str, dict[str, list[Any]]]
    views: dict[str, Any]
    site_menu: dict[str, Any]
    tag_ids_by_label: dict[str, Any]
    manifest: dict[str, Any]


def build_manifest(conference: ConferenceRecord, *, build_timestamp: datetime | None = None) -> dict[str, Any]:
    return {
        "code": conference.code,
        "name": conference.name,
        "timezone": conference.timezone,
        "schemaVersion": SCHEMA_VERSION,
        "buildTimestamp": utc_timestamp(build_timestamp),
    }


def prepare_collections(snapshot: RawSnapshot) -> RawCollections:
    # Strings are sanitized before shaping so every sort sees the text that gets written.
    return shape_collections(sanitize_strings_deep(snapshot.collections))


def _organization_card_count(views: dict[str, Any]) -> int:
    return len({card["id"] for cards in views["organizationsCards"].values() for card in cards})


def build_artifacts(
    snapshot: RawSnapshot,
    *,
    strict: bool = False,
    verify: bool = False,
    verify_preview: int = 5,
    build_timestamp: datetime | None = None,
) -> BuildArtifacts:
    """Run every in-memory stage of a build. Nothing touches disk here."""
    conference = shape_conference(snapshot.conference)
    time_zone = conference.timezone
    collections = prepare_collections(snapshot)

    validation = validate_collections(collections, time_zone)
    if validation.warnings:
        logger.warning("validation warnings", warnings=list(validation.warnings))
    else:
        logger.info("validation warnings", warnings="none")
    if strict and validation.warnings:
        raise StrictValidationError(validation)

    site_menu = build_site_menu(collections.menus)
    logger.info(
        "derived site menu",
        primary=len(site_menu["primary"]),
        sections=len(site_menu.get("sections", [])),
    )
    tag_ids_by_label = build_tag_ids_by_label(collections.tagtypes)
    logger.info(
        "derived tag label map",
        keys=len(tag_ids_by_label["byLabel"]),
        collisions=len(tag_ids_by_label.get("collisions", {})),
    )

    entities = build_entities(collections)
    indexes = build_indexes(entities, time_zone)
    views = build_views(entities)
    logger.info("entities built", counts=entities.counts())
    logger.info("indexes built", counts={name: len(index) for name, index in indexes.items()})
    logger.info(
        "views built",
        eventCardsById=len(views["eventCardsById"]),
        organizationsCards=_organization_card_count(views),
        peopleCards=len(views["peopleCards"]),
        tagTypesBrowse=len(views["tagTypesBrowse"]),
        documentsList=len(views["documentsList"]),
        contentCards=len(views["contentCards"]),
    )

    if verify:
        errors = verify_outputs(entities, indexes, views)
        if errors:
            raise VerificationError(errors, preview=verify_preview)
        logger.info("verify ok")

    return BuildArtifacts(
        conference=conference,
        validation=validation,
        entities=entities,
        indexes=indexes,
        views=views,
        site_menu=site_menu,
        tag_ids_by_label=tag_ids_by_label,
        manifest=build_manifest(conference, build_timestamp=build_timestamp),
    )


def artifact_files(artifacts: BuildArtifacts, *, raw: RawSnapshot | None = None) -> list[OutputFile]:
    files = [OutputFile(f"entities/{name}.json", store.as_dict()) for name, store in sorted(artifacts.entities)]
    files.extend(OutputFile(f"indexes/{name}.json", index) for name, index in sorted(artifacts.indexes.items()))
    files.extend(OutputFile(f"views/{name}.json", view) for name, view in sorted(artifacts.views.items()))
    files.append(OutputFile("derived/siteMenu.json", artifacts.site_menu))
    files.append(OutputFile("derived/tagIdsByLabel.json", artifacts.tag_ids_by_label))
    files.append(OutputFile("manifest.json", artifacts.manifest))
    if raw is not None:
        # Raw snapshots are kept byte-faithful to what was fetched.
        files.extend(
            OutputFile(f"raw/{name}.json", records, sanitize=False) for name, records in sorted(raw.collections.items())
        )
        files.append(OutputFile("raw/conference.json", raw.conference, sanitize=False))
    return files


def run_export(
    source: SnapshotSource,
    conference_code: str,
    *,
    config: BuildConfig,
    build_timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Fetch, build, optionally verify, and write one conference dataset."""
    code = conference_code.strip()
    if not code:
        raise BuildError("conference code is required")
    started_at = time.monotonic()
    output_dir = Path(config.output_root) / code.lower()

    bind_context(conference=code)
    try:
        logger.info("starting export", output_dir=output_dir.as_posix())
        snapshot = fetch_snapshot(source, code, max_workers=config.fetch_workers)
        artifacts = build_artifacts(
            snapshot,
            strict=config.strict,
            verify=config.verify,
            verify_preview=config.verify_preview,
            build_timestamp=build_timestamp,
        )
        files = artifact_files(artifacts, raw=snapshot if config.emit_raw else None)
        written = write_outputs(output_dir, files, max_workers=config.fetch_workers)

        summary = summarize_output_dir(output_dir, emit_raw=config.emit_raw)
        if summary.warnings:
            logger.warning("output summary warnings", warnings=summary.warnings)
            if config.strict or config.verify:
                raise BuildError(f"output summary check failed under strict/verify: {'; '.join(summary.warnings)}")
        logger.info(
            "output summary",
            files=summary.total_files,
            size_kb=summary.total_size_kb,
            sections=summary.section_counts,
            largest=[f"{entry['name']}={entry['sizeKb']}KB" for entry in summary.largest_files],
        )

        elapsed = round(time.monotonic() - started_at, 2)
        logger.info("export finished", output_dir=output_dir.as_posix(), raw=config.emit_raw, elapsed_seconds=elapsed)
        return {
            "ok": True,
            "code": artifacts.conference.code,
            "output_dir": output_dir.as_posix(),
            "files_written": len(written),
            "raw_emitted": config.emit_raw,
            "verified": config.verify,
            "entities": artifacts.entities.counts(),
            "validation": artifacts.validation.as_dict(),
            "summary": summary.as_dict(),
            "elapsed_seconds": elapsed,
        }
    finally:
        clear_context()


def run_validate_source(source: SnapshotSource, conference_code: str, *, max_workers: int = 8) -> dict[str, Any]:
    snapshot = fetch_snapshot(source, conference_code, max_workers=max_workers)
    conference = shape_conference(snapshot.conference)
    summary = validate_collections(prepare_collections(snapshot), conference.timezone)
    return {"ok": summary.ok, "code": conference.code, **summary.as_dict()}
