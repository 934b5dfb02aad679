"""Runtime configuration helpers."""

from __future__ import annotations

import logging
import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE_NAME,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_GIT_TIMEOUT_SECONDS,
    DEFAULT_PRUNE_CHECK_INTERVAL_SECONDS,
    DEFAULT_REMOTE,
    DEFAULT_TARGET_BRANCH,
    GIT_DIR_NAME,
)
from .file_manager import FileManager

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
REMOTE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
REPO_SETTING_KEYS = ("target_branch", "remote")


@dataclass(frozen=True)
class RuntimeSettings:
    """Settings sourced from environment variables, then the repository file."""

    repo_path: str
    target_branch: str = DEFAULT_TARGET_BRANCH
    remote: str = DEFAULT_REMOTE
    git_timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    prune_check_interval_seconds: int = DEFAULT_PRUNE_CHECK_INTERVAL_SECONDS
    sync_reflog: bool = True
    log_level: str = "WARNING"


def get_runtime_settings(env: Mapping[str, str] | None = None) -> RuntimeSettings:
    """Validate and return settings from environment variables."""
    source = os.environ if env is None else env

    repo_path = source.get("GBM_REPO_PATH", "").strip() or os.getcwd()
    target_branch = source.get("GBM_TARGET_BRANCH", "").strip() or DEFAULT_TARGET_BRANCH
    remote = source.get("GBM_REMOTE", "").strip() or DEFAULT_REMOTE
    validate_remote_name(remote, "GBM_REMOTE")

    log_level = source.get("GBM_LOG_LEVEL", "").strip().upper() or "WARNING"
    if log_level not in LOG_LEVELS:
        allowed = ", ".join(sorted(LOG_LEVELS))
        raise ValueError(f"GBM_LOG_LEVEL must be one of: {allowed}.")

    return RuntimeSettings(
        repo_path=repo_path,
        target_branch=target_branch,
        remote=remote,
        git_timeout_seconds=_parse_float_env(
            source, "GBM_GIT_TIMEOUT_SECONDS", DEFAULT_GIT_TIMEOUT_SECONDS, min_value=0.1
        ),
        cache_ttl_seconds=_parse_float_env(
            source, "GBM_METADATA_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS, min_value=0.0
        ),
        prune_check_interval_seconds=_parse_int_env(
            source,
            "GBM_PRUNE_CHECK_INTERVAL_SECONDS",
            DEFAULT_PRUNE_CHECK_INTERVAL_SECONDS,
            min_value=0,
        ),
        sync_reflog=_parse_bool_env(source, "GBM_SYNC_REFLOG", True),
        log_level=log_level,
    )


def repo_config_path(repo_path: str | Path) -> Path:
    return Path(repo_path).expanduser() / GIT_DIR_NAME / CONFIG_FILE_NAME


def load_repo_settings(
    settings: RuntimeSettings,
    file_manager: FileManager | None = None,
) -> RuntimeSettings:
    """Overlay ``.git/gbm-config.yaml`` values onto *settings*."""
    manager = file_manager or FileManager()
    payload = manager.read_yaml(repo_config_path(settings.repo_path))
    overrides: dict[str, Any] = {}
    for key in REPO_SETTING_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            overrides[key] = value.strip()
    if "remote" in overrides:
        validate_remote_name(overrides["remote"], f"{CONFIG_FILE_NAME}: remote")
    return replace(settings, **overrides) if overrides else settings


def save_repo_settings(
    repo_path: str | Path,
    values: Mapping[str, str],
    file_manager: FileManager | None = None,
) -> dict[str, Any]:
    """Merge *values* into the repository settings file and return its content."""
    manager = file_manager or FileManager()
    path = repo_config_path(repo_path)
    payload = manager.read_yaml(path)
    for key, value in values.items():
        if key not in REPO_SETTING_KEYS:
            raise ValueError(f"Unsupported repository setting '{key}'.")
        payload[key] = value
    manager.write_yaml(path, payload)
    return payload


def validate_remote_name(value: str, field_name: str) -> None:
    if not REMOTE_NAME_PATTERN.fullmatch(value):
        raise ValueError(f"{field_name} must be a plain remote name (letters, digits, . _ -).")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_bool_env(source: Mapping[str, str], key: str, default: bool) -> bool:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    normalized = str(raw).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be a boolean value (true/false).")


def _parse_int_env(
    source: Mapping[str, str],
    key: str,
    default: int,
    min_value: int | None = None,
) -> int:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = int(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer.") from exc
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed


def _parse_float_env(
    source: Mapping[str, str],
    key: str,
    default: float,
    min_value: float | None = None,
) -> float:
    raw = source.get(key)
    if raw is None or not str(raw).strip():
        return default
    try:
        parsed = float(str(raw).strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be a number.") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{key} must be a finite number.")
    if min_value is not None and parsed < min_value:
        raise ValueError(f"{key} must be >= {min_value}.")
    return parsed
