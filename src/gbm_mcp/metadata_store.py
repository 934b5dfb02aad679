"""JSON-backed branch metadata with a short-lived read cache.

The whole document is read and written at once. Concurrent writers through
different store instances are last-write-wins; the store is meant for a
single interactive operator.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .constants import DEFAULT_CACHE_TTL_SECONDS, GIT_DIR_NAME, METADATA_FILE_NAME, PRUNE_META_FILE_NAME
from .errors import ErrorCode, GBMError
from .file_manager import FileManager
from .models import BranchMetadata, CheckoutEntry, PruneMeta
from .parser import parse_timestamp

logger = logging.getLogger(__name__)

MetadataDocument = dict[str, BranchMetadata]


@dataclass
class CacheEntry:
    value: MetadataDocument
    valid_until: float


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _copy_document(document: MetadataDocument) -> MetadataDocument:
    return {name: record.model_copy() for name, record in document.items()}


class MetadataStore:
    """Branch name -> ``BranchMetadata`` document stored under ``.git``."""

    def __init__(
        self,
        repo_path: str | Path,
        file_manager: FileManager | None = None,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        now_fn: Callable[[], float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        git_dir = Path(repo_path).expanduser() / GIT_DIR_NAME
        self.path = git_dir / METADATA_FILE_NAME
        self.prune_path = git_dir / PRUNE_META_FILE_NAME
        self.file_manager = file_manager or FileManager()
        self.cache_ttl = max(0.0, float(cache_ttl))
        self._now_fn = now_fn or time.monotonic
        self._clock = clock or _utc_now
        self._cache: CacheEntry | None = None

    def invalidate(self) -> None:
        self._cache = None

    def get_all(self) -> MetadataDocument:
        return self._read()

    def get(self, name: str) -> BranchMetadata | None:
        return self._read().get(name)

    def create_or_update(self, name: str, updates: dict[str, Any]) -> BranchMetadata:
        """Shallow-merge *updates* over the existing (or default) record."""
        document = self._read()
        existing = document.get(name) or BranchMetadata()
        try:
            updated = BranchMetadata.model_validate({**existing.model_dump(), **updates})
        except ValidationError as exc:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"Invalid metadata update for branch '{name}'",
                "Check field names and value types.",
                {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc
        document[name] = updated
        self._write(document)
        return updated

    def toggle_star(self, name: str) -> BranchMetadata:
        existing = self.get(name)
        return self.create_or_update(name, {"starred": not (existing.starred if existing else False)})

    def update_description(self, name: str, description: str) -> BranchMetadata:
        return self.create_or_update(name, {"description": description.strip() or None})

    def record_checkout(self, name: str) -> BranchMetadata:
        existing = self.get(name)
        return self.create_or_update(
            name,
            {
                "last_checked_out": self._clock().isoformat(),
                "checkout_count": (existing.checkout_count if existing else 0) + 1,
            },
        )

    def rename(self, old_name: str, new_name: str) -> None:
        document = self._read()
        if old_name not in document:
            return
        document[new_name] = document.pop(old_name)
        self._write(document)

    def delete(self, name: str) -> None:
        document = self._read()
        if document.pop(name, None) is None:
            return
        self._write(document)

    def reconcile(self, live_names: Iterable[str]) -> bool:
        """Make the stored key set equal to *live_names*. Returns True on change."""
        live = set(live_names)
        document = self._read()
        changed = False

        for name in sorted(live):
            if name not in document:
                document[name] = BranchMetadata()
                changed = True

        for name in list(document):
            if name not in live:
                del document[name]
                changed = True

        if changed:
            self._write(document)
        return changed

    def sync_checkout_history(self, entries: Iterable[CheckoutEntry]) -> int:
        """Apply reflog checkouts that are strictly newer than what is stored.

        Unknown branches are skipped; replaying the same history is a no-op.
        Returns the number of records updated.
        """
        document = self._read()
        updated = 0
        for entry in entries:
            existing = document.get(entry.branch)
            if existing is None:
                continue
            incoming = parse_timestamp(entry.date)
            if incoming is None:
                continue
            stored = parse_timestamp(existing.last_checked_out)
            if stored is not None and incoming <= stored:
                continue
            document[entry.branch] = existing.model_copy(
                update={
                    "last_checked_out": incoming.astimezone(timezone.utc).isoformat(),
                    "checkout_count": existing.checkout_count + 1,
                }
            )
            updated += 1

        if updated:
            self._write(document)
        return updated

    def get_prune_meta(self) -> PruneMeta:
        try:
            payload = self.file_manager.read_json(self.prune_path)
            return PruneMeta.model_validate(payload)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read prune metadata %s, using defaults: %s", self.prune_path, exc)
            return PruneMeta()

    def set_prune_meta(self, stale_count: int) -> PruneMeta:
        meta = PruneMeta(last_checked=self._clock().isoformat(), stale_count=max(0, int(stale_count)))
        self.file_manager.write_json(self.prune_path, meta.model_dump(by_alias=True))
        return meta

    def _read(self) -> MetadataDocument:
        now = self._now_fn()
        if self._cache is not None and now < self._cache.valid_until:
            return _copy_document(self._cache.value)

        try:
            raw = self.file_manager.read_json(self.path)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Failed to read metadata file %s, starting with empty metadata: %s",
                self.path,
                exc,
            )
            return {}

        document: MetadataDocument = {}
        for name, record in raw.items():
            try:
                document[str(name)] = BranchMetadata.model_validate(record)
            except ValidationError:
                logger.warning("Ignoring malformed metadata record for branch %r", name)
                document[str(name)] = BranchMetadata()

        self._cache = CacheEntry(value=document, valid_until=now + self.cache_ttl)
        return _copy_document(document)

    def _write(self, document: MetadataDocument) -> None:
        self.invalidate()
        payload = {
            name: record.model_dump(by_alias=True, exclude_none=True)
            for name, record in document.items()
        }
        self.file_manager.write_json(self.path, payload)
        self._cache = CacheEntry(
            value=_copy_document(document),
            valid_until=self._now_fn() + self.cache_ttl,
        )
