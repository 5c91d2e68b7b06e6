"""On-disk cache of work items and sync metadata.

Layout under the cache root (``.claude/azure`` by default)::

    cache/
        features/123.json
        stories/456.json
        tasks/789.json
    sync/
        last-sync.json

Key design choices:

* **Atomic writes** -- every write goes to a temp file in the destination
  directory followed by ``os.replace()``, so readers see either the old or
  the new document, never a partial one.
* **Self-verifying records** -- ``save()`` recomputes ``local_hash`` from
  ``fields``; ``load()`` recomputes it again and raises
  ``CacheIntegrityError`` on mismatch.
* **Partition per type** -- each work item type lives in its own directory
  so it can be synced, inspected, or purged independently.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from workitem_sync.errors import CacheIntegrityError, CacheWriteError
from workitem_sync.sync.models import (
    SyncMetadata,
    WorkItemRecord,
    fields_hash,
)

logger = logging.getLogger(__name__)

_ID_FILE = re.compile(r"^(-?\d+)\.json$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _atomic_write_json(target: Path, payload: Any) -> None:
    """Write *payload* as JSON to *target* via temp file + ``os.replace``."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent), prefix=".", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False, default=str)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class CacheStore:
    """Load, save, and query cached work items for one cache root.

    Args:
        root: Cache root directory.
        partitions: Work item type -> partition directory name.  Types not
            listed fall back to a lowercase slug of the type name.
    """

    METADATA_FILE = Path("sync") / "last-sync.json"

    def __init__(
        self, root: Path, partitions: dict[str, str] | None = None
    ) -> None:
        self.root = Path(root)
        self._partitions = dict(partitions or {})
        self._draft_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def partition_dir(self, item_type: str) -> Path:
        name = self._partitions.get(item_type)
        if name is None:
            name = re.sub(r"[^a-z0-9]+", "-", item_type.lower()).strip("-")
        return self.root / "cache" / name

    def _record_path(self, item_type: str, item_id: int) -> Path:
        return self.partition_dir(item_type) / f"{item_id}.json"

    @property
    def metadata_path(self) -> Path:
        return self.root / self.METADATA_FILE

    def init(self) -> None:
        """Create the partition and metadata directories."""
        for item_type in self._partitions:
            self.partition_dir(item_type).mkdir(parents=True, exist_ok=True)
        self.metadata_path.parent.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def load(self, item_type: str, item_id: int) -> WorkItemRecord | None:
        """Return the cached record, or ``None`` if there is none.

        Raises:
            CacheIntegrityError: If the document is unreadable or its
                ``local_hash`` does not match its fields.
        """
        path = self._record_path(item_type, item_id)
        if not path.exists():
            return None
        return self._read_record(path)

    def _read_record(self, path: Path) -> WorkItemRecord:
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            record = WorkItemRecord.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            raise CacheIntegrityError(
                f"Unreadable cache record {path}: {exc}"
            ) from exc

        if fields_hash(record.fields) != record.local_hash:
            raise CacheIntegrityError(
                f"Hash mismatch for cache record {path}: fields were modified outside the cache store"
            )
        return record

    def ids(self, item_type: str) -> list[int]:
        """Ids present in the partition, readable or not, in sorted order."""
        directory = self.partition_dir(item_type)
        if not directory.is_dir():
            return []
        found = []
        for entry in directory.iterdir():
            match = _ID_FILE.match(entry.name)
            if match:
                found.append(int(match.group(1)))
        return sorted(found)

    def load_all(self, item_type: str) -> Iterator[WorkItemRecord]:
        """Lazily yield every readable record of *item_type*.

        Iterates over a snapshot of the directory listing, so abandoning
        the iterator has no side effects and a fresh call starts over.
        Unreadable records are logged and skipped.
        """
        for item_id in self.ids(item_type):
            path = self._record_path(item_type, item_id)
            try:
                yield self._read_record(path)
            except CacheIntegrityError as exc:
                logger.warning("Skipping cache record: %s", exc)
            except FileNotFoundError:
                continue

    def dirty_ids(self, item_type: str) -> list[int]:
        """Ids of drafts and records with local edits not yet pushed."""
        return [
            r.id
            for r in self.load_all(item_type)
            if not r.tombstone and (r.is_draft or r.has_local_changes)
        ]

    def count(self, item_type: str) -> int:
        """Number of live (non-tombstoned) records of *item_type*."""
        return sum(1 for r in self.load_all(item_type) if not r.tombstone)

    def save(self, record: WorkItemRecord) -> WorkItemRecord:
        """Persist *record* atomically and return what was written.

        ``local_hash`` is recomputed from ``fields`` and ``cached_at`` is
        stamped before writing.

        Raises:
            CacheWriteError: If the write fails; the previous document, if
                any, is left untouched.
        """
        stored = record.model_copy(
            update={
                "local_hash": fields_hash(record.fields),
                "cached_at": _now(),
            }
        )
        path = self._record_path(stored.type, stored.id)
        try:
            _atomic_write_json(path, stored.model_dump(mode="json"))
        except OSError as exc:
            raise CacheWriteError(
                f"Failed to write cache record {path}: {exc}"
            ) from exc
        logger.debug(
            "Cached %s #%s (rev %s)", stored.type, stored.id, stored.revision
        )
        return stored

    def update_fields(
        self, item_type: str, item_id: int, fields: dict[str, Any]
    ) -> WorkItemRecord:
        """Apply a local edit to a cached record.

        The baseline is kept, so the edit shows up as a pending local
        change on the next sync.

        Raises:
            KeyError: If the record does not exist.
        """
        record = self.load(item_type, item_id)
        if record is None:
            raise KeyError(f"{item_type} #{item_id} is not cached")
        merged = {**record.fields, **fields}
        return self.save(record.model_copy(update={"fields": merged}))

    def create_draft(
        self, item_type: str, fields: dict[str, Any]
    ) -> WorkItemRecord:
        """Create a local-only work item with the next free negative id."""
        with self._draft_lock:
            existing = [i for i in self.ids(item_type) if i < 0]
            draft_id = min(existing, default=0) - 1
            record = WorkItemRecord(
                id=draft_id, type=item_type, fields=dict(fields)
            )
            return self.save(record)

    def remove(self, item_type: str, item_id: int) -> None:
        """Physically delete a record.  No-op if absent."""
        path = self._record_path(item_type, item_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Removed %s #%s from cache", item_type, item_id)

    def tombstone(self, item_type: str, item_id: int) -> WorkItemRecord | None:
        """Mark a record as deleted remotely, keeping its last contents."""
        record = self.load(item_type, item_id)
        if record is None or record.tombstone:
            return record
        return self.save(
            record.model_copy(update={"tombstone": True, "deleted_at": _now()})
        )

    def purge_tombstones(self, item_type: str, older_than_days: int) -> int:
        """Remove tombstones older than *older_than_days*; return the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        purged = 0
        for record in self.load_all(item_type):
            if not record.tombstone or record.deleted_at is None:
                continue
            if datetime.fromisoformat(record.deleted_at) <= cutoff:
                self.remove(item_type, record.id)
                purged += 1
        if purged:
            logger.info("Purged %d tombstoned %s records", purged, item_type)
        return purged

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def read_metadata(self) -> SyncMetadata | None:
        """Return the sync metadata, or ``None`` before the first run.

        Raises:
            CacheIntegrityError: If the metadata document is unreadable.
        """
        path = self.metadata_path
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return SyncMetadata.model_validate(json.load(fh))
        except (OSError, ValueError, ValidationError) as exc:
            raise CacheIntegrityError(
                f"Unreadable sync metadata {path}: {exc}"
            ) from exc

    def write_metadata(self, meta: SyncMetadata) -> None:
        """Persist sync metadata atomically."""
        _atomic_write_json(self.metadata_path, meta.model_dump(mode="json"))

    def cache_size_bytes(self) -> int:
        """Total size of all cached record documents."""
        cache_dir = self.root / "cache"
        if not cache_dir.is_dir():
            return 0
        return sum(
            p.stat().st_size for p in cache_dir.rglob("*.json") if p.is_file()
        )
