from __future__ import annotations

import json
import re
import shutil
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any

LINE_BREAK_RE = re.compile(r"\r\n|\r|[\u2028\u2029]")
SPACE_RUN_RE = re.compile(r" {3,}")
TRAILING_SPACES_RE = re.compile(r" +$")


@dataclass(frozen=True)
class OutputFile:
    """One JSON document to write, relative to the output directory."""

    relative_path: str
    payload: Any
    sanitize: bool = True


def sanitize_string(value: str) -> str:
    normalized = LINE_BREAK_RE.sub("\n", value).replace("\t", " ")
    lines = [TRAILING_SPACES_RE.sub("", SPACE_RUN_RE.sub(" ", line)) for line in normalized.split("\n")]
    return "\n".join(lines)


def sanitize_strings_deep(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, list):
        return [sanitize_strings_deep(item) for item in value]
    if isinstance(value, Mapping):
        return {key: sanitize_strings_deep(item) for key, item in value.items()}
    return value


def render_json(payload: Any, *, sanitize: bool = True) -> str:
    data = sanitize_strings_deep(payload) if sanitize else payload
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _staging_dir(output_dir: Path) -> Path:
    return output_dir.with_name(f".{output_dir.name}.staging")


def write_outputs(output_dir: Path | str, files: list[OutputFile], *, max_workers: int = 8) -> list[str]:
    """Write every file into a sibling staging directory, then swap it in.

    The target directory is only replaced once every write has succeeded, so a
    failed run never leaves a half-written dataset behind.
    """
    target = Path(output_dir)
    staging = _staging_dir(target)
    if staging.exists():
        shutil.rmtree(staging)
    staging.mkdir(parents=True)

    def write_one(item: OutputFile) -> str:
        write_text(staging / item.relative_path, render_json(item.payload, sanitize=item.sanitize))
        return item.relative_path

    try:
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            written = list(executor.map(write_one, files))
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    if target.exists():
        shutil.rmtree(target)
    staging.rename(target)
    return sorted(written)
