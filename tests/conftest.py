"""Shared pytest fixtures for workitem-sync tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

from workitem_sync.config import Config
from workitem_sync.errors import NotFoundError, RemoteWriteConflict
from workitem_sync.sync.engine import SyncOrchestrator
from workitem_sync.sync.models import RemoteSnapshot, WorkItemRecord
from workitem_sync.sync.store import CacheStore


class FakeRemote:
    """In-memory ``RemoteAdapter`` for testing.

    Items listed in ``recent`` are the ones a windowed ``list_changed``
    returns.  ``fail_fetch`` / ``fail_apply`` map an id to a queue of
    exceptions raised one per call before calls start succeeding.
    """

    def __init__(self) -> None:
        self.items: Dict[int, RemoteSnapshot] = {}
        self.recent: Set[int] = set()
        self.fail_list: Optional[Exception] = None
        self.fail_fetch: Dict[int, List[Exception]] = {}
        self.fail_apply: Dict[int, List[Exception]] = {}
        self.on_fetch: Optional[Callable[[int], None]] = None
        self.on_apply: Optional[Callable[[int], None]] = None
        self.list_calls: list[tuple] = []
        self.fetch_calls: list[int] = []
        self.apply_calls: list[WorkItemRecord] = []
        self.next_id = 1000

    # -- test helpers ---------------------------------------------------

    def add(
        self,
        item_id: int,
        item_type: str = "Task",
        fields: Optional[Dict[str, Any]] = None,
        revision: int = 1,
        recent: bool = True,
    ) -> RemoteSnapshot:
        snapshot = RemoteSnapshot(
            id=item_id,
            type=item_type,
            fields=dict(fields or {"System.Title": f"Item {item_id}"}),
            revision=revision,
        )
        self.items[item_id] = snapshot
        if recent:
            self.recent.add(item_id)
        return snapshot

    def edit(self, item_id: int, **fields: Any) -> RemoteSnapshot:
        current = self.items[item_id]
        updated = current.model_copy(
            update={
                "fields": {**current.fields, **fields},
                "revision": current.revision + 1,
            }
        )
        self.items[item_id] = updated
        self.recent.add(item_id)
        return updated

    def delete(self, item_id: int) -> None:
        del self.items[item_id]
        self.recent.discard(item_id)

    # -- RemoteAdapter --------------------------------------------------

    def list_changed(
        self, item_type: str, window_days: Optional[int]
    ) -> List[int]:
        self.list_calls.append((item_type, window_days))
        if self.fail_list is not None:
            raise self.fail_list
        return [
            item_id
            for item_id, snap in self.items.items()
            if snap.type == item_type
            and (window_days is None or item_id in self.recent)
        ]

    def fetch_detail(self, item_type: str, item_id: int) -> RemoteSnapshot:
        self.fetch_calls.append(item_id)
        if self.on_fetch is not None:
            self.on_fetch(item_id)
        pending = self.fail_fetch.get(item_id)
        if pending:
            raise pending.pop(0)
        if item_id not in self.items:
            raise NotFoundError(f"{item_type} #{item_id} not found")
        return self.items[item_id]

    def apply(self, item_type: str, record: WorkItemRecord) -> RemoteSnapshot:
        self.apply_calls.append(record)
        if self.on_apply is not None:
            self.on_apply(record.id)
        pending = self.fail_apply.get(record.id)
        if pending:
            raise pending.pop(0)
        if record.is_draft:
            item_id = self.next_id
            self.next_id += 1
            return self.add(item_id, item_type, record.fields, revision=1)

        current = self.items.get(record.id)
        if current is None:
            raise NotFoundError(f"{item_type} #{record.id} not found")
        if current.revision != record.revision:
            raise RemoteWriteConflict(
                f"rev {record.revision} is stale (remote is {current.revision})"
            )
        updated = current.model_copy(
            update={
                "fields": dict(record.fields),
                "revision": current.revision + 1,
            }
        )
        self.items[record.id] = updated
        return updated


@pytest.fixture
def mock_config():
    """Create a Config instance for client tests."""
    return Config(
        organization="contoso",
        project="Apollo",
        pat="test-pat",
        insecure=False,
    )


@pytest.fixture
def sync_config(tmp_path: Path) -> Config:
    """Config pointing the cache at a temp dir, with instant retries."""
    return Config(
        organization="contoso",
        project="Apollo",
        pat="test-pat",
        cache_root=str(tmp_path / ".claude" / "azure"),
        retry_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def store(sync_config: Config) -> CacheStore:
    cache = CacheStore(
        Path(sync_config.cache_root), sync_config.work_item_types
    )
    cache.init()
    return cache


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def orchestrator(
    fake_remote: FakeRemote, store: CacheStore, sync_config: Config
) -> SyncOrchestrator:
    return SyncOrchestrator(
        fake_remote,  # type: ignore[arg-type]
        store,
        sync_config,
        sleep=lambda _delay: None,
    )
