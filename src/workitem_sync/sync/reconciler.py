"""Three-way reconciliation of a cached work item against its remote copy.

Each side is compared against the **baseline** recorded at the last
successful sync, never only against the other side:

* local changed  <=> ``local_hash != synced_hash``
* remote changed <=> ``remote.revision != local.revision``

Comparing local and remote directly cannot tell "remote moved forward, local
is stale" apart from "both moved independently"; the baseline can.
"""

from __future__ import annotations

from typing import Any

from workitem_sync.sync.models import (
    Classification,
    ReconciliationOutcome,
    RemoteSnapshot,
    WorkItemRecord,
)

_MISSING = object()


def diff_fields(
    left: dict[str, Any], right: dict[str, Any]
) -> frozenset[str]:
    """Names of fields whose values differ between *left* and *right*.

    A field present on one side only counts as different.
    """
    names = set(left) | set(right)
    return frozenset(
        name
        for name in names
        if left.get(name, _MISSING) != right.get(name, _MISSING)
    )


def reconcile(
    local: WorkItemRecord | None,
    remote: RemoteSnapshot | None,
    item_type: str | None = None,
    item_id: int | None = None,
) -> ReconciliationOutcome:
    """Classify how the local and remote copies of one item relate.

    Args:
        local: The cached record, or ``None`` if not cached (or unreadable).
        remote: The remote snapshot, or ``None`` if the remote reported the
            item as not found.
        item_type: Type to report when both sides are absent.
        item_id: Id to report when both sides are absent.

    Returns:
        A ``ReconciliationOutcome``; pure, performs no I/O.
    """
    source = remote or local
    outcome_type = source.type if source is not None else (item_type or "")
    outcome_id = source.id if source is not None else (item_id or 0)

    def outcome(
        classification: Classification, **extra: Any
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            item_id=outcome_id,
            item_type=outcome_type,
            classification=classification,
            local_record=local,
            remote_record=remote,
            **extra,
        )

    if local is None or local.tombstone:
        if remote is None:
            return outcome(Classification.UNCHANGED)
        # Unseen, unreadable, or resurrected after a tombstone
        return outcome(Classification.NEW_REMOTE)

    if remote is None:
        if local.is_draft:
            return outcome(Classification.NEW_LOCAL)
        return outcome(Classification.DELETED_REMOTE)

    field_diffs = diff_fields(local.fields, remote.fields)
    local_changed = local.has_local_changes
    remote_changed = remote.revision != local.revision

    if not local_changed and not remote_changed:
        return outcome(Classification.UNCHANGED)

    if local_changed and not remote_changed:
        return outcome(
            Classification.UPDATED_LOCAL,
            field_diffs=field_diffs,
            local_changes=diff_fields(local.baseline, local.fields),
        )

    if remote_changed and not local_changed:
        return outcome(
            Classification.UPDATED_REMOTE,
            field_diffs=field_diffs,
            remote_changes=diff_fields(local.baseline, remote.fields),
        )

    return outcome(
        Classification.CONFLICT,
        field_diffs=field_diffs,
        local_changes=diff_fields(local.baseline, local.fields),
        remote_changes=diff_fields(local.baseline, remote.fields),
    )
