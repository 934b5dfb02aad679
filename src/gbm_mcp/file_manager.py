"""Low-level file system helpers used by the metadata store and engine."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, GBMError


class FileManager:
    """Whole-document text/JSON/YAML reads and writes."""

    def read_text(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"File not found: {path}",
                "Check the path and try again.",
                {"path": str(path)},
            ) from exc
        except UnicodeDecodeError as exc:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"File is not valid UTF-8 text: {path}",
                "Re-generate the file as UTF-8 text.",
                {"path": str(path), "position": exc.start},
            ) from exc
        except OSError as exc:
            raise GBMError(
                ErrorCode.STORAGE_FAILURE,
                f"Unable to read {path}: {exc}",
                "Check file permissions and try again.",
                {"path": str(path)},
            ) from exc

    def read_json(self, path: Path) -> dict[str, Any]:
        """Return the JSON object stored at *path*, or ``{}`` when missing.

        Unreadable or malformed files raise ``OSError``/``ValueError``; callers
        decide whether that degrades or propagates.
        """
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as handle:
            loaded = json.load(handle)
        if isinstance(loaded, dict):
            return loaded
        raise ValueError(f"{path} does not contain a JSON object")

    def write_json(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
        except OSError as exc:
            raise GBMError(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to write {path}: {exc}",
                "Check directory permissions and try again.",
                {"path": str(path)},
            ) from exc

    def write_yaml(self, path: Path, payload: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=False)
        except OSError as exc:
            raise GBMError(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to write {path}: {exc}",
                "Check directory permissions and try again.",
                {"path": str(path)},
            ) from exc

    def read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle)
        except (OSError, yaml.YAMLError) as exc:
            raise GBMError(
                ErrorCode.STORAGE_FAILURE,
                f"Unable to read {path}: {exc}",
                "Fix or remove the settings file and try again.",
                {"path": str(path)},
            ) from exc
        if isinstance(loaded, dict):
            return loaded
        return {}

    def write_text(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise GBMError(
                ErrorCode.STORAGE_FAILURE,
                f"Failed to write {path}: {exc}",
                "Check directory permissions and try again.",
                {"path": str(path)},
            ) from exc
