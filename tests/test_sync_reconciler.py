"""Tests for three-way reconciliation.

Every classification is exercised, plus the change sets each side
reports against the baseline.
"""

from __future__ import annotations

from workitem_sync.sync.models import (
    Classification,
    RemoteSnapshot,
    WorkItemRecord,
    fields_hash,
)
from workitem_sync.sync.reconciler import diff_fields, reconcile

BASE = {"System.Title": "Title", "System.State": "New"}


def _local(fields=None, revision=1, baseline=None, **extra) -> WorkItemRecord:
    fields = dict(BASE if fields is None else fields)
    baseline = dict(BASE if baseline is None else baseline)
    return WorkItemRecord(
        id=extra.pop("id", 10),
        type="Task",
        fields=fields,
        revision=revision,
        local_hash=fields_hash(fields),
        synced_hash=fields_hash(baseline),
        baseline=baseline,
        **extra,
    )


def _remote(fields=None, revision=1) -> RemoteSnapshot:
    return RemoteSnapshot(
        id=10,
        type="Task",
        fields=dict(BASE if fields is None else fields),
        revision=revision,
    )


class TestDiffFields:
    def test_identical(self):
        assert diff_fields(BASE, dict(BASE)) == frozenset()

    def test_changed_and_one_sided(self):
        left = {"a": 1, "b": 2}
        right = {"a": 1, "b": 3, "c": 4}
        assert diff_fields(left, right) == {"b", "c"}

    def test_none_differs_from_missing(self):
        assert diff_fields({"a": None}, {}) == {"a"}


class TestReconcile:
    def test_both_absent(self):
        outcome = reconcile(None, None, "Task", 5)

        assert outcome.classification == Classification.UNCHANGED
        assert (outcome.item_type, outcome.item_id) == ("Task", 5)

    def test_unchanged(self):
        outcome = reconcile(_local(), _remote())

        assert outcome.classification == Classification.UNCHANGED
        assert outcome.field_diffs == frozenset()

    def test_new_remote(self):
        outcome = reconcile(None, _remote())

        assert outcome.classification == Classification.NEW_REMOTE
        assert outcome.item_id == 10

    def test_tombstoned_local_is_resurrected(self):
        outcome = reconcile(_local(tombstone=True), _remote(revision=2))

        assert outcome.classification == Classification.NEW_REMOTE

    def test_tombstoned_local_and_no_remote(self):
        outcome = reconcile(_local(tombstone=True), None)

        assert outcome.classification == Classification.UNCHANGED

    def test_new_local_draft(self):
        draft = WorkItemRecord(
            id=-1,
            type="Task",
            fields={"System.Title": "Draft"},
            local_hash=fields_hash({"System.Title": "Draft"}),
        )

        outcome = reconcile(draft, None)

        assert outcome.classification == Classification.NEW_LOCAL
        assert outcome.item_id == -1

    def test_deleted_remote(self):
        outcome = reconcile(_local(), None)

        assert outcome.classification == Classification.DELETED_REMOTE

    def test_updated_remote(self):
        remote = _remote({**BASE, "System.State": "Active"}, revision=2)

        outcome = reconcile(_local(), remote)

        assert outcome.classification == Classification.UPDATED_REMOTE
        assert outcome.remote_changes == {"System.State"}
        assert outcome.local_changes == frozenset()
        assert outcome.field_diffs == {"System.State"}

    def test_updated_local(self):
        local = _local({**BASE, "System.Title": "Edited"})

        outcome = reconcile(local, _remote())

        assert outcome.classification == Classification.UPDATED_LOCAL
        assert outcome.local_changes == {"System.Title"}
        assert outcome.remote_changes == frozenset()

    def test_conflict_reports_both_change_sets(self):
        local = _local({**BASE, "System.Title": "Edited"})
        remote = _remote({**BASE, "System.State": "Active"}, revision=2)

        outcome = reconcile(local, remote)

        assert outcome.classification == Classification.CONFLICT
        assert outcome.local_changes == {"System.Title"}
        assert outcome.remote_changes == {"System.State"}
        assert outcome.field_diffs == {"System.Title", "System.State"}

    def test_remote_revision_bump_without_field_change(self):
        # Only the revision moved (e.g. a comment was added remotely)
        outcome = reconcile(_local(), _remote(revision=2))

        assert outcome.classification == Classification.UPDATED_REMOTE
        assert outcome.remote_changes == frozenset()

    def test_local_edit_reverted_is_unchanged(self):
        local = _local(dict(BASE))

        outcome = reconcile(local, _remote())

        assert outcome.classification == Classification.UNCHANGED

    def test_outcome_keeps_both_records(self):
        local, remote = _local(), _remote(revision=3)

        outcome = reconcile(local, remote)

        assert outcome.local_record is local
        assert outcome.remote_record is remote
