"""Bidirectional work-item sync engine.

Public API for keeping a local on-disk cache of work items (Features,
User Stories, Tasks) consistent with Azure DevOps.

Architecture
------------
The engine uses **baseline-based three-way reconciliation**: each cached
record keeps the field values and revision from its last successful sync,
and each side is compared against that baseline rather than against the
other side.

Modules:

- ``engine``      -- ``SyncOrchestrator``: drives one run through its phases.
- ``store``       -- ``CacheStore``: atomic JSON records and sync metadata.
- ``remote``      -- ``RemoteAdapter`` protocol, ``AzureDevOpsAdapter``,
  ``call_with_retry``.
- ``reconciler``  -- ``reconcile()``: pure classification of one item.
- ``resolver``    -- Conflict resolution strategies (field-merge,
  text-merge, local-wins, remote-wins).
- ``merger``      -- Field overlay and three-way text merge via ``merge3``.
- ``models``      -- Records, outcomes, results and ``SyncReport``.

Usage example
-------------
::

    from workitem_sync.config import load_config
    from workitem_sync.sync import SyncOrchestrator

    orchestrator = SyncOrchestrator.from_config(load_config())

    # Preview first
    preview = orchestrator.run(scope="quick", dry_run=True)
    print(preview.report_to_json()["summary"])

    report = orchestrator.run(scope="quick")
"""

from .engine import SyncOrchestrator
from .models import (
    Classification,
    ConflictResolution,
    ItemResult,
    ReconciliationOutcome,
    RemoteSnapshot,
    SyncAction,
    SyncDirection,
    SyncMetadata,
    SyncPhase,
    SyncReport,
    SyncScope,
    WorkItemRecord,
)
from .reconciler import reconcile
from .remote import AzureDevOpsAdapter, RemoteAdapter, call_with_retry
from .resolver import create_resolver
from .store import CacheStore

__all__ = [
    "AzureDevOpsAdapter",
    "CacheStore",
    "Classification",
    "ConflictResolution",
    "ItemResult",
    "ReconciliationOutcome",
    "RemoteAdapter",
    "RemoteSnapshot",
    "SyncAction",
    "SyncDirection",
    "SyncMetadata",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncReport",
    "SyncScope",
    "WorkItemRecord",
    "call_with_retry",
    "create_resolver",
    "reconcile",
]
