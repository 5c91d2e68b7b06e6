"""Pydantic models for the work-item sync engine.

Defines the core data contracts used across all sync modules:

- ``WorkItemRecord``: One cached work item plus its sync baseline.
- ``RemoteSnapshot``: A freshly fetched remote work item.
- ``SyncMetadata``: Per-cache record of the last run.
- ``Classification`` / ``ReconciliationOutcome``: Result of comparing the
  two replicas of one item.
- ``ConflictResolution``: What the resolver decided for a conflict.
- ``SyncAction`` / ``ItemResult`` / ``SyncReport``: What a run did.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

from pydantic import BaseModel


def fields_hash(fields: dict[str, Any]) -> str:
    """Compute a SHA-256 fingerprint of a field mapping.

    Keys are sorted so the fingerprint does not depend on field order;
    values that are not JSON-native are rendered with ``str()``.
    """
    canonical = json.dumps(
        fields,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SyncDirection(str, Enum):
    PULL = "pull"
    PUSH = "push"
    BOTH = "both"

    @property
    def pulls(self) -> bool:
        return self in (SyncDirection.PULL, SyncDirection.BOTH)

    @property
    def pushes(self) -> bool:
        return self in (SyncDirection.PUSH, SyncDirection.BOTH)


class SyncScope(str, Enum):
    QUICK = "quick"
    FULL = "full"


class SyncPhase(str, Enum):
    """States of one orchestrator run."""

    IDLE = "idle"
    SCOPING = "scoping"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    RESOLVING = "resolving"
    APPLYING = "applying"
    FINALIZED = "finalized"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class WorkItemRecord(BaseModel):
    """One cached work item.

    Attributes:
        id: Remote work item id; negative for local drafts not yet pushed.
        type: Work item type (``"Feature"``, ``"User Story"``, ``"Task"``).
        fields: Field name -> value, in remote order.
        revision: Remote revision at last sync; ``None`` for drafts.
        local_hash: Fingerprint of ``fields`` at last write.
        synced_hash: Fingerprint of ``fields`` at last successful sync.
        baseline: Field values at last successful sync.
        cached_at: ISO 8601 timestamp of the last local write.
        tombstone: True once a remote deletion has been observed.
        deleted_at: ISO 8601 timestamp of the tombstoning.
    """

    id: int
    type: str
    fields: dict[str, Any] = {}
    revision: int | None = None
    local_hash: str = ""
    synced_hash: str | None = None
    baseline: dict[str, Any] = {}
    cached_at: str | None = None
    tombstone: bool = False
    deleted_at: str | None = None

    model_config = {"frozen": True}

    @property
    def is_draft(self) -> bool:
        return self.id < 0 or self.revision is None

    @property
    def has_local_changes(self) -> bool:
        return self.local_hash != self.synced_hash

    @property
    def title(self) -> str | None:
        value = self.fields.get("System.Title")
        return str(value) if value is not None else None


class RemoteSnapshot(BaseModel):
    """A work item as the remote reported it during this run."""

    id: int
    type: str
    fields: dict[str, Any] = {}
    revision: int
    changed_at: str | None = None

    model_config = {"frozen": True}

    def to_record(self) -> WorkItemRecord:
        """Build a clean, fully synced cache record from this snapshot."""
        digest = fields_hash(self.fields)
        return WorkItemRecord(
            id=self.id,
            type=self.type,
            fields=dict(self.fields),
            revision=self.revision,
            local_hash=digest,
            synced_hash=digest,
            baseline=dict(self.fields),
        )


class SyncMetadata(BaseModel):
    """Per-cache record of the most recent run.

    ``last_sync_at`` only advances when a run reaches ``finalized``;
    ``last_attempt_at`` advances on every non-dry run.
    """

    last_sync_at: str | None = None
    last_attempt_at: str | None = None
    mode: SyncScope = SyncScope.QUICK
    direction: SyncDirection = SyncDirection.BOTH
    scope_window_days: int | None = None
    item_counts: dict[str, int] = {}
    classification_counts: dict[str, int] = {}
    cache_size_bytes: int = 0
    status: str = "succeeded"
    run_id: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    elapsed_seconds: float | None = None
    error: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class Classification(str, Enum):
    """How the two replicas of one item relate."""

    UNCHANGED = "unchanged"
    NEW_REMOTE = "new_remote"
    NEW_LOCAL = "new_local"
    UPDATED_REMOTE = "updated_remote"
    UPDATED_LOCAL = "updated_local"
    CONFLICT = "conflict"
    DELETED_REMOTE = "deleted_remote"


class ReconciliationOutcome(BaseModel):
    """Result of comparing the local and remote copy of one item.

    Attributes:
        item_id: Work item id.
        item_type: Work item type.
        classification: The relationship between the two copies.
        local_record: Cached copy, if any.
        remote_record: Remote copy, if any.
        field_diffs: Fields whose value differs between local and remote.
        local_changes: Fields changed locally since the baseline.
        remote_changes: Fields changed remotely since the baseline.
    """

    item_id: int
    item_type: str
    classification: Classification
    local_record: WorkItemRecord | None = None
    remote_record: RemoteSnapshot | None = None
    field_diffs: frozenset[str] = frozenset()
    local_changes: frozenset[str] = frozenset()
    remote_changes: frozenset[str] = frozenset()

    model_config = {"frozen": True}


class ResolutionStrategy(str, Enum):
    REMOTE_WINS = "remote-wins"
    LOCAL_WINS = "local-wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictResolution(BaseModel):
    """The resolver's decision for one conflict.

    For ``manual`` resolutions ``resolved_fields`` is ``None`` and both
    ``local_fields`` and ``remote_fields`` are kept for display; neither
    side's edit is discarded.
    """

    item_id: int
    item_type: str
    strategy: ResolutionStrategy
    resolved_fields: dict[str, Any] | None = None
    requires_manual_action: bool = False
    base_fields: dict[str, Any] = {}
    local_fields: dict[str, Any] = {}
    remote_fields: dict[str, Any] = {}
    overlapping_fields: list[str] = []

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Results and report
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Possible sync operations for one work item."""

    SKIP = "skip"
    PULL = "pull"
    PUSH = "push"
    CREATE_LOCAL = "create_local"
    CREATE_REMOTE = "create_remote"
    DELETE_LOCAL = "delete_local"
    MERGE = "merge"
    CONFLICT = "conflict"


_DOWNLOAD_ACTIONS = frozenset({SyncAction.PULL, SyncAction.CREATE_LOCAL})
_UPLOAD_ACTIONS = frozenset({SyncAction.PUSH, SyncAction.CREATE_REMOTE})


class ItemResult(BaseModel):
    """Result of syncing one work item.

    Attributes:
        item_id: Work item id (the remote id once a draft has been pushed).
        item_type: Work item type.
        classification: Reconciliation classification.
        action: Planned (dry run) or performed action.
        success: Whether the action succeeded.
        applied: Whether anything was written.
        error: Error or skip reason.
        local_id: Original draft id when a draft was pushed.
    """

    item_id: int
    item_type: str
    classification: Classification | None = None
    action: SyncAction
    success: bool = True
    applied: bool = False
    error: str | None = None
    local_id: int | None = None

    model_config = {"frozen": True}


class TypeCounts(BaseModel):
    downloaded: int = 0
    uploaded: int = 0
    conflicting: int = 0
    skipped: int = 0
    errored: int = 0
    unchanged: int = 0
    deleted: int = 0


class SyncReport(BaseModel):
    """Aggregate report for a full sync run.

    Attributes:
        run_id: Identifier of the run.
        direction: Direction actually used.
        scope: Scope actually used.
        dry_run: Whether the plan was only computed.
        status: ``succeeded``, ``partial``, ``cancelled`` or ``failed``.
        results: Per-item results.
        unresolved_conflicts: Conflicts that need manual action.
        started_at: ISO 8601 start timestamp.
        completed_at: ISO 8601 completion timestamp.
        elapsed_seconds: Wall-clock duration of the run.
        cancelled: Whether the run was cancelled before completion.
    """

    run_id: str
    direction: SyncDirection
    scope: SyncScope
    dry_run: bool = False
    status: str = "succeeded"
    results: list[ItemResult] = []
    unresolved_conflicts: list[ConflictResolution] = []
    started_at: str
    completed_at: str | None = None
    elapsed_seconds: float = 0.0
    cancelled: bool = False

    model_config = {"frozen": True}

    @property
    def downloaded(self) -> list[ItemResult]:
        return [
            r
            for r in self.results
            if r.success and r.action in _DOWNLOAD_ACTIONS
        ]

    @property
    def uploaded(self) -> list[ItemResult]:
        return [
            r
            for r in self.results
            if r.success and r.action in _UPLOAD_ACTIONS
        ]

    @property
    def conflicting(self) -> list[ItemResult]:
        """Results whose classification is CONFLICT, resolved or not."""
        return [
            r
            for r in self.results
            if r.classification == Classification.CONFLICT
        ]

    @property
    def deleted(self) -> list[ItemResult]:
        return [
            r
            for r in self.results
            if r.success and r.action == SyncAction.DELETE_LOCAL
        ]

    @property
    def unchanged(self) -> list[ItemResult]:
        return [
            r
            for r in self.results
            if r.classification == Classification.UNCHANGED
        ]

    @property
    def skipped(self) -> list[ItemResult]:
        """Results skipped for a reason other than being unchanged."""
        return [
            r
            for r in self.results
            if r.success
            and r.action == SyncAction.SKIP
            and r.classification != Classification.UNCHANGED
        ]

    @property
    def errored(self) -> list[ItemResult]:
        return [r for r in self.results if not r.success]

    @property
    def is_clean(self) -> bool:
        """True when nothing needs human attention."""
        return not self.errored and not self.unresolved_conflicts

    def counts_by_type(self) -> dict[str, TypeCounts]:
        """Per-type counters for the report consumers."""
        counts: dict[str, TypeCounts] = {}
        buckets = {
            "downloaded": self.downloaded,
            "uploaded": self.uploaded,
            "conflicting": self.conflicting,
            "skipped": self.skipped,
            "errored": self.errored,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
        }
        for r in self.results:
            counts.setdefault(r.item_type, TypeCounts())
        for name, bucket in buckets.items():
            for r in bucket:
                tc = counts[r.item_type]
                setattr(tc, name, getattr(tc, name) + 1)
        return counts

    def report_to_json(self) -> dict:
        """Structured dict for JSON serialisation by collaborators."""
        return {
            "run_id": self.run_id,
            "direction": self.direction.value,
            "scope": self.scope.value,
            "dry_run": self.dry_run,
            "status": self.status,
            "cancelled": self.cancelled,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "elapsed_seconds": self.elapsed_seconds,
            "summary": {
                "downloaded": len(self.downloaded),
                "uploaded": len(self.uploaded),
                "conflicts": len(self.conflicting),
                "errors": len(self.errored),
                "skipped": len(self.skipped),
                "unchanged": len(self.unchanged),
                "deleted": len(self.deleted),
            },
            "by_type": {
                t: c.model_dump() for t, c in self.counts_by_type().items()
            },
            "unresolved_conflicts": [
                {
                    "id": c.item_id,
                    "type": c.item_type,
                    "fields": c.overlapping_fields,
                    "local": c.local_fields,
                    "remote": c.remote_fields,
                }
                for c in self.unresolved_conflicts
            ],
            "results": [
                r.model_dump(mode="json", exclude_none=True)
                for r in self.results
            ],
        }
