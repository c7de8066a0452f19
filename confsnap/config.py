from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator

from confsnap.schemas import StrictModel

DEFAULT_OUTPUT_ROOT = "out/ht"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _parse_bool(raw: str, *, env_var: str) -> bool:
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{env_var} must be a boolean value")


def _normalize_optional_token(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    return text


class BuildConfig(StrictModel):
    output_root: str = DEFAULT_OUTPUT_ROOT
    emit_raw: bool = False
    strict: bool = False
    verify: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    fetch_workers: int = Field(default=8, ge=1)
    fetch_timeout: float = Field(default=30.0, gt=0)
    firestore_project: str | None = None
    firestore_api_key: str | None = None
    verify_preview: int = Field(default=5, ge=0)

    @field_validator("output_root")
    @classmethod
    def validate_output_root(cls, value: str) -> str:
        path = value.strip()
        if not path:
            raise ValueError("output_root must be non-empty")
        return path

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(sorted(LOG_LEVELS))}")
        return level

    @field_validator("firestore_project", "firestore_api_key")
    @classmethod
    def normalize_optional_tokens(cls, value: str | None) -> str | None:
        return _normalize_optional_token(value)


BOOL_ENV_FIELDS = {
    "emit_raw": "CONFSNAP_EMIT_RAW",
    "strict": "CONFSNAP_STRICT",
    "verify": "CONFSNAP_VERIFY",
    "log_json": "CONFSNAP_LOG_JSON",
}
TEXT_ENV_FIELDS = {
    "output_root": "CONFSNAP_OUTPUT_ROOT",
    "log_level": "CONFSNAP_LOG_LEVEL",
    "fetch_workers": "CONFSNAP_FETCH_WORKERS",
    "fetch_timeout": "CONFSNAP_FETCH_TIMEOUT",
    "firestore_project": "CONFSNAP_FIRESTORE_PROJECT",
    "firestore_api_key": "CONFSNAP_FIRESTORE_API_KEY",
}


def load_config_file(path: Path | str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"config file does not exist: {config_path.as_posix()}")
    payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"config file must contain a mapping: {config_path.as_posix()}")
    return payload


def load_build_config(
    environ: Mapping[str, str] | None = None,
    *,
    config_path: Path | str | None = None,
    base_config: BuildConfig | None = None,
) -> BuildConfig:
    """Defaults, then an optional YAML file, then ``CONFSNAP_*`` variables."""
    env = dict(os.environ if environ is None else environ)
    config = base_config or BuildConfig()
    payload = config.model_dump(mode="python")

    if config_path is not None:
        payload.update(load_config_file(config_path))

    for field_name, env_var in BOOL_ENV_FIELDS.items():
        if env_var in env:
            payload[field_name] = _parse_bool(env[env_var], env_var=env_var)
    for field_name, env_var in TEXT_ENV_FIELDS.items():
        if env_var in env:
            payload[field_name] = env[env_var].strip()

    return BuildConfig.model_validate(payload)
