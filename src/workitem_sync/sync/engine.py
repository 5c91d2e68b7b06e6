"""Sync orchestrator that drives one synchronization run.

The ``SyncOrchestrator`` ties together the cache store, remote adapter,
reconciler and resolver.  One run moves through these phases:

1. **Scoping** -- resolve direction and scope, reject the run if another
   one still looks alive, write an ``in_progress`` marker.
2. **Fetching** -- list candidate ids per type, load the cached copy and
   fetch the remote copy of each, in a bounded worker pool.
3. **Reconciling** -- classify every item (three-way, against its baseline).
4. **Resolving** -- route conflicts through the resolver and turn each
   outcome into a planned action, filtered by direction.
5. **Applying** -- execute the plan (skipped for dry runs).  Items are
   serialized per id; an item whose cached copy moved since planning is
   re-reconciled first.
6. **Finalized** -- write metadata describing what actually happened.

Error handling is per item: a single failure, expected or not, does not
abort the run.  Only cache-root or endpoint-level errors move the run to
**Failed**, and the metadata records that outcome before the error
propagates.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from workitem_sync.config import Config
from workitem_sync.core.async_utils import gather_limited, run_sync_limited
from workitem_sync.errors import (
    CacheIntegrityError,
    ConfigurationError,
    NotFoundError,
    RemoteEndpointError,
    RemoteError,
    StaleRevisionError,
    SyncError,
    SyncInProgressError,
)
from workitem_sync.sync.models import (
    Classification,
    ConflictResolution,
    ItemResult,
    ReconciliationOutcome,
    RemoteSnapshot,
    ResolutionStrategy,
    SyncAction,
    SyncDirection,
    SyncMetadata,
    SyncPhase,
    SyncReport,
    SyncScope,
    WorkItemRecord,
    fields_hash,
)
from workitem_sync.sync.reconciler import reconcile
from workitem_sync.sync.remote import RemoteAdapter, call_with_retry
from workitem_sync.sync.resolver import ConflictResolver, create_resolver
from workitem_sync.sync.store import CacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED = "cancelled"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require(
    value: T | None, what: str, outcome: ReconciliationOutcome
) -> T:
    if value is None:
        raise ValueError(
            f"No {what} for {outcome.item_type} #{outcome.item_id}"
        )
    return value


def _describe(exc: Exception) -> str:
    if isinstance(exc, SyncError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


@dataclass
class _Fetched:
    """Both copies of one candidate item, or the error that prevented it."""

    item_type: str
    item_id: int
    local: WorkItemRecord | None = None
    remote: RemoteSnapshot | None = None
    error: str | None = None


@dataclass
class _Plan:
    """What the run intends to do with one reconciled item."""

    outcome: ReconciliationOutcome
    action: SyncAction
    resolution: ConflictResolution | None = None
    reason: str | None = None


class SyncOrchestrator:
    """Drive synchronization runs between a remote adapter and a cache store.

    Args:
        adapter: Remote adapter (read-through / write-through).
        store: Cache store for the local replica.
        config: Runtime configuration (types, defaults, limits, retries).
        resolver: Conflict resolver; defaults to ``config.conflict_strategy``.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        adapter: RemoteAdapter,
        store: CacheStore,
        config: Config,
        resolver: ConflictResolver | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.adapter = adapter
        self.store = store
        self.config = config
        self.resolver = resolver or create_resolver(config.conflict_strategy)
        self._sleep = sleep

        self._phase = SyncPhase.IDLE
        self._stop = threading.Event()
        self._cancel_requested = threading.Event()
        self._fatal: SyncError | None = None
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: Config) -> SyncOrchestrator:
        """Wire the Azure DevOps adapter and the on-disk cache from *config*."""
        from workitem_sync.core.client import AzureDevOpsClient
        from workitem_sync.sync.remote import AzureDevOpsAdapter

        try:
            resolver = create_resolver(config.conflict_strategy)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        store = CacheStore(Path(config.cache_root), config.work_item_types)
        store.init()
        adapter = AzureDevOpsAdapter(AzureDevOpsClient(config))
        return cls(adapter, store, config, resolver=resolver)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def item_types(self) -> list[str]:
        return list(self.config.work_item_types)

    def cancel(self) -> None:
        """Stop the current run between items.  Safe from any thread.

        A request made before ``run()`` starts cancels that next run; the
        request is cleared once a run ends.
        """
        logger.info("Cancellation requested")
        self._cancel_requested.set()
        self._stop.set()

    def run(
        self,
        direction: SyncDirection | str | None = None,
        scope: SyncScope | str | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Execute one sync run and block until it completes.

        Args:
            direction: ``pull``, ``push`` or ``both``; config default if None.
            scope: ``quick`` or ``full``; config default if None.
            dry_run: If ``True``, compute and report the plan only.

        Returns:
            A ``SyncReport`` describing what was (or would be) done.

        Raises:
            SyncInProgressError: Another run on this cache is alive.
            SyncError: Run-level failure (metadata unreadable, endpoint
                unreachable).
        """
        return asyncio.run(self.run_async(direction, scope, dry_run))

    async def run_async(
        self,
        direction: SyncDirection | str | None = None,
        scope: SyncScope | str | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Async form of ``run()`` for callers that own an event loop."""
        try:
            return await self._run(direction, scope, dry_run)
        finally:
            self._stop.clear()
            self._cancel_requested.clear()

    async def _run(
        self,
        direction: SyncDirection | str | None,
        scope: SyncScope | str | None,
        dry_run: bool,
    ) -> SyncReport:
        sync_direction = SyncDirection(direction or self.config.direction)
        sync_scope = SyncScope(scope or self.config.scope)
        window = (
            self.config.quick_window_days
            if sync_scope == SyncScope.QUICK
            else None
        )

        self._fatal = None
        self._locks = {}

        run_id = uuid.uuid4().hex[:12]
        started_at = _now()
        started = time.monotonic()

        # --- Scoping ---------------------------------------------------
        self._set_phase(SyncPhase.SCOPING)
        try:
            previous = self.store.read_metadata()
            self._check_liveness(previous)
        except SyncError:
            self._set_phase(SyncPhase.FAILED)
            raise

        logger.info(
            "Sync run %s: direction=%s scope=%s%s",
            run_id,
            sync_direction.value,
            sync_scope.value,
            " (dry run)" if dry_run else "",
        )

        base_meta = SyncMetadata(
            last_sync_at=previous.last_sync_at if previous else None,
            last_attempt_at=started_at,
            mode=sync_scope,
            direction=sync_direction,
            scope_window_days=window,
            item_counts=previous.item_counts if previous else {},
            cache_size_bytes=previous.cache_size_bytes if previous else 0,
            status="in_progress",
            run_id=run_id,
            started_at=started_at,
        )
        if not dry_run:
            self.store.write_metadata(base_meta)

        semaphore = asyncio.Semaphore(self.config.max_parallel_requests)
        results: list[ItemResult] = []
        plans: list[_Plan] = []

        try:
            # --- Fetching ----------------------------------------------
            self._set_phase(SyncPhase.FETCHING)
            candidates = await self._collect_candidates(
                sync_direction, sync_scope, window, semaphore
            )
            fetched = await gather_limited(
                [
                    self._fetch_one(item_type, item_id, semaphore)
                    for item_type, item_id in candidates
                ]
            )
            self._raise_if_fatal()

            # --- Reconciling -------------------------------------------
            self._set_phase(SyncPhase.RECONCILING)
            outcomes: list[ReconciliationOutcome | None] = [
                None
                if f.error is not None
                else reconcile(f.local, f.remote, f.item_type, f.item_id)
                for f in fetched
            ]

            # --- Resolving ---------------------------------------------
            self._set_phase(SyncPhase.RESOLVING)
            for outcome in outcomes:
                if outcome is not None:
                    plans.append(self._plan(outcome, sync_direction))

            # --- Applying ----------------------------------------------
            if dry_run:
                applied = [(self._planned_result(p), p) for p in plans]
            else:
                self._set_phase(SyncPhase.APPLYING)
                applied = await gather_limited(
                    [
                        self._apply_one(p, sync_direction, semaphore)
                        for p in plans
                    ]
                )
                self._raise_if_fatal()

            plans = [p for _, p in applied]
            applied_iter = iter(applied)
            for f, outcome in zip(fetched, outcomes):
                if outcome is None:
                    # Items never fetched because of cancellation are not errors
                    results.append(
                        ItemResult(
                            item_id=f.item_id,
                            item_type=f.item_type,
                            action=SyncAction.SKIP,
                            success=f.error == CANCELLED,
                            error=f.error,
                        )
                    )
                else:
                    results.append(next(applied_iter)[0])

            if (
                sync_scope == SyncScope.FULL
                and not dry_run
                and not self._stop.is_set()
            ):
                for item_type in self.item_types:
                    await run_sync_limited(
                        semaphore,
                        self.store.purge_tombstones,
                        item_type,
                        self.config.tombstone_retention_days,
                    )
        except SyncError as exc:
            self._set_phase(SyncPhase.FAILED)
            logger.error("Sync run %s failed: %s", run_id, exc)
            if not dry_run:
                self._write_final_metadata(
                    base_meta, results, started, status="failed", error=str(exc)
                )
            raise
        except Exception as exc:
            # Never leave the in_progress marker behind
            self._set_phase(SyncPhase.FAILED)
            logger.exception("Sync run %s failed unexpectedly", run_id)
            if not dry_run:
                self._write_final_metadata(
                    base_meta,
                    results,
                    started,
                    status="failed",
                    error=_describe(exc),
                )
            raise
        except asyncio.CancelledError:
            self._stop.set()
            self._set_phase(SyncPhase.FAILED)
            if not dry_run:
                self._write_final_metadata(
                    base_meta, results, started, status=CANCELLED
                )
            raise

        unresolved = [
            p.resolution
            for p in plans
            if p.resolution is not None
            and p.resolution.requires_manual_action
        ]
        cancelled = self._cancel_requested.is_set()
        if cancelled:
            status = CANCELLED
        elif unresolved or any(not r.success for r in results):
            status = "partial"
        else:
            status = "succeeded"

        completed_at = _now()
        if not dry_run:
            self._write_final_metadata(
                base_meta, results, started, status=status, completed_at=completed_at
            )

        self._set_phase(SyncPhase.FINALIZED)
        report = SyncReport(
            run_id=run_id,
            direction=sync_direction,
            scope=sync_scope,
            dry_run=dry_run,
            status=status,
            results=results,
            unresolved_conflicts=unresolved,
            started_at=started_at,
            completed_at=completed_at,
            elapsed_seconds=round(time.monotonic() - started, 3),
            cancelled=cancelled,
        )
        logger.info(
            "Sync run %s %s: %d downloaded, %d uploaded, %d conflicts, %d errors",
            run_id,
            status,
            len(report.downloaded),
            len(report.uploaded),
            len(report.conflicting),
            len(report.errored),
        )
        return report

    # ------------------------------------------------------------------
    # Scoping
    # ------------------------------------------------------------------

    def _set_phase(self, phase: SyncPhase) -> None:
        logger.info("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase

    def _check_liveness(self, previous: SyncMetadata | None) -> None:
        if previous is None or previous.status != "in_progress":
            return
        age = float("inf")
        if previous.started_at:
            started = datetime.fromisoformat(previous.started_at)
            age = (datetime.now(timezone.utc) - started).total_seconds()
        if age < self.config.stale_run_seconds:
            raise SyncInProgressError(
                f"Sync run {previous.run_id} started {int(age)}s ago is still in progress"
            )
        logger.warning(
            "Ignoring stale in-progress marker from run %s", previous.run_id
        )

    def _with_retry(self, func: Callable[..., T], *args: Any) -> T:
        return call_with_retry(
            func,
            *args,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _candidate_ids(
        self,
        item_type: str,
        direction: SyncDirection,
        scope: SyncScope,
        window: int | None,
    ) -> list[int]:
        ids: dict[int, None] = {}
        if direction.pulls:
            for item_id in self._with_retry(
                self.adapter.list_changed, item_type, window
            ):
                ids[item_id] = None
            if scope == SyncScope.FULL:
                # Cached ids the remote no longer lists are deletion candidates
                tombstoned = {
                    r.id for r in self.store.load_all(item_type) if r.tombstone
                }
                for item_id in self.store.ids(item_type):
                    if item_id > 0 and item_id not in tombstoned:
                        ids[item_id] = None
        if direction.pushes:
            for item_id in self.store.dirty_ids(item_type):
                ids[item_id] = None
        return list(ids)

    async def _collect_candidates(
        self,
        direction: SyncDirection,
        scope: SyncScope,
        window: int | None,
        semaphore: asyncio.Semaphore,
    ) -> list[tuple[str, int]]:
        per_type = await gather_limited(
            [
                run_sync_limited(
                    semaphore,
                    self._candidate_ids,
                    item_type,
                    direction,
                    scope,
                    window,
                )
                for item_type in self.item_types
            ]
        )
        candidates = [
            (item_type, item_id)
            for item_type, ids in zip(self.item_types, per_type)
            for item_id in ids
        ]
        logger.info("%d candidate items", len(candidates))
        return candidates

    def _load_local(
        self, item_type: str, item_id: int
    ) -> WorkItemRecord | None:
        """Load a cached record, treating an untrustworthy one as absent."""
        try:
            return self.store.load(item_type, item_id)
        except CacheIntegrityError as exc:
            logger.warning("%s; re-fetching from remote", exc)
            return None

    def _fetch_item(self, item_type: str, item_id: int) -> _Fetched:
        local = self._load_local(item_type, item_id)
        if local is not None and local.is_draft:
            return _Fetched(item_type, item_id, local=local)
        try:
            remote = self._with_retry(
                self.adapter.fetch_detail, item_type, item_id
            )
        except NotFoundError:
            remote = None
        return _Fetched(item_type, item_id, local=local, remote=remote)

    async def _fetch_one(
        self, item_type: str, item_id: int, semaphore: asyncio.Semaphore
    ) -> _Fetched:
        if self._stop.is_set():
            return _Fetched(item_type, item_id, error=CANCELLED)
        try:
            return await run_sync_limited(
                semaphore, self._fetch_item, item_type, item_id
            )
        except RemoteEndpointError as exc:
            self._record_fatal(exc)
            return _Fetched(item_type, item_id, error=str(exc))
        except (RemoteError, SyncError) as exc:
            logger.error("Failed to fetch %s #%s: %s", item_type, item_id, exc)
            return _Fetched(item_type, item_id, error=str(exc))
        except Exception as exc:
            logger.exception(
                "Unexpected error fetching %s #%s", item_type, item_id
            )
            return _Fetched(item_type, item_id, error=_describe(exc))

    def _record_fatal(self, exc: SyncError) -> None:
        logger.error("Endpoint-level failure, stopping run: %s", exc)
        if self._fatal is None:
            self._fatal = exc
        self._stop.set()

    def _raise_if_fatal(self) -> None:
        if self._fatal is not None:
            raise self._fatal

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(
        self, outcome: ReconciliationOutcome, direction: SyncDirection
    ) -> _Plan:
        """Turn an outcome into a planned action, filtered by direction."""
        c = outcome.classification

        if c == Classification.UNCHANGED:
            return _Plan(outcome, SyncAction.SKIP)

        if c in (Classification.NEW_REMOTE, Classification.UPDATED_REMOTE):
            action = (
                SyncAction.CREATE_LOCAL
                if c == Classification.NEW_REMOTE
                else SyncAction.PULL
            )
            return self._filtered(outcome, action, direction.pulls, direction)

        if c in (Classification.NEW_LOCAL, Classification.UPDATED_LOCAL):
            action = (
                SyncAction.CREATE_REMOTE
                if c == Classification.NEW_LOCAL
                else SyncAction.PUSH
            )
            return self._filtered(outcome, action, direction.pushes, direction)

        if c == Classification.DELETED_REMOTE:
            local = outcome.local_record
            if local is not None and local.has_local_changes:
                logger.warning(
                    "%s #%s was deleted remotely but has local edits; keeping it",
                    outcome.item_type,
                    outcome.item_id,
                )
                return _Plan(
                    outcome,
                    SyncAction.SKIP,
                    reason="deleted remotely with pending local edits",
                )
            return self._filtered(
                outcome, SyncAction.DELETE_LOCAL, direction.pulls, direction
            )

        # Conflict
        resolution = self.resolver.resolve(outcome)
        match resolution.strategy:
            case ResolutionStrategy.MANUAL:
                return _Plan(outcome, SyncAction.CONFLICT, resolution)
            case ResolutionStrategy.REMOTE_WINS:
                plan = self._filtered(
                    outcome, SyncAction.PULL, direction.pulls, direction
                )
                plan.resolution = resolution
                return plan
            case ResolutionStrategy.LOCAL_WINS if direction.pushes:
                return _Plan(outcome, SyncAction.PUSH, resolution)
            case _:
                # Merged (or local-wins without push): pushed when allowed,
                # otherwise rebased onto the remote revision locally
                return _Plan(outcome, SyncAction.MERGE, resolution)

    @staticmethod
    def _filtered(
        outcome: ReconciliationOutcome,
        action: SyncAction,
        allowed: bool,
        direction: SyncDirection,
    ) -> _Plan:
        if allowed:
            return _Plan(outcome, action)
        logger.debug(
            "Downgrading %s to SKIP (direction=%s)",
            action.value,
            direction.value,
        )
        return _Plan(
            outcome, SyncAction.SKIP, reason=f"direction={direction.value}"
        )

    @staticmethod
    def _planned_result(plan: _Plan) -> ItemResult:
        return ItemResult(
            item_id=plan.outcome.item_id,
            item_type=plan.outcome.item_type,
            classification=plan.outcome.classification,
            action=plan.action,
            error=plan.reason,
        )

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------

    def _lock_for(self, item_type: str, item_id: int) -> asyncio.Lock:
        key = (item_type, item_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _apply_one(
        self,
        plan: _Plan,
        direction: SyncDirection,
        semaphore: asyncio.Semaphore,
    ) -> tuple[ItemResult, _Plan]:
        outcome = plan.outcome
        async with self._lock_for(outcome.item_type, outcome.item_id):
            try:
                return await run_sync_limited(
                    semaphore, self._apply_item, plan, direction
                )
            except RemoteEndpointError as exc:
                self._record_fatal(exc)
                return self._failed(plan, exc), plan
            except (RemoteError, SyncError) as exc:
                logger.error(
                    "Failed to %s %s #%s: %s",
                    plan.action.value,
                    outcome.item_type,
                    outcome.item_id,
                    exc,
                )
                return self._failed(plan, exc), plan
            except Exception as exc:
                logger.exception(
                    "Unexpected error during %s of %s #%s",
                    plan.action.value,
                    outcome.item_type,
                    outcome.item_id,
                )
                return self._failed(plan, exc), plan

    @staticmethod
    def _failed(plan: _Plan, exc: Exception) -> ItemResult:
        return ItemResult(
            item_id=plan.outcome.item_id,
            item_type=plan.outcome.item_type,
            classification=plan.outcome.classification,
            action=plan.action,
            success=False,
            error=_describe(exc),
        )

    @staticmethod
    def _moved(
        planned: WorkItemRecord | None, current: WorkItemRecord | None
    ) -> bool:
        if planned is None or current is None:
            return planned is not current
        return (
            planned.revision != current.revision
            or planned.local_hash != current.local_hash
            or planned.tombstone != current.tombstone
        )

    def _apply_item(
        self, plan: _Plan, direction: SyncDirection
    ) -> tuple[ItemResult, _Plan]:
        """Apply one plan, re-reconciling first if the cache moved."""
        outcome = plan.outcome
        if self._stop.is_set():
            # Runs with a worker slot held
            return (
                ItemResult(
                    item_id=outcome.item_id,
                    item_type=outcome.item_type,
                    classification=outcome.classification,
                    action=SyncAction.SKIP,
                    error=CANCELLED,
                ),
                plan,
            )
        current = self._load_local(outcome.item_type, outcome.item_id)
        if self._moved(outcome.local_record, current):
            logger.info(
                "%s #%s changed in the cache since planning; re-reconciling",
                outcome.item_type,
                outcome.item_id,
            )
            plan = self._plan(
                reconcile(
                    current,
                    outcome.remote_record,
                    outcome.item_type,
                    outcome.item_id,
                ),
                direction,
            )
        return self._execute(plan, direction), plan

    def _execute(self, plan: _Plan, direction: SyncDirection) -> ItemResult:
        outcome = plan.outcome
        item_type = outcome.item_type
        local = outcome.local_record
        remote = outcome.remote_record
        result_id = outcome.item_id
        local_id: int | None = None

        match plan.action:
            case SyncAction.SKIP | SyncAction.CONFLICT:
                return self._planned_result(plan)

            case SyncAction.CREATE_LOCAL | SyncAction.PULL:
                remote = _require(remote, "remote copy", outcome)
                if (
                    local is not None
                    and not local.tombstone
                    and local.revision is not None
                    and remote.revision < local.revision
                ):
                    raise StaleRevisionError(
                        f"Remote revision {remote.revision} of {item_type} #{remote.id} "
                        f"is older than cached revision {local.revision}"
                    )
                self.store.save(remote.to_record())

            case SyncAction.DELETE_LOCAL:
                self.store.tombstone(item_type, outcome.item_id)

            case SyncAction.PUSH | SyncAction.CREATE_REMOTE:
                local = _require(local, "local copy", outcome)
                to_push = local
                if plan.resolution is not None and remote is not None:
                    to_push = self._rebased(
                        local, remote, plan.resolution.resolved_fields
                    )
                snapshot = self._with_retry(
                    self.adapter.apply, item_type, to_push
                )
                self.store.save(snapshot.to_record())
                if snapshot.id != local.id:
                    # Draft replaced by the record carrying the remote id
                    self.store.remove(item_type, local.id)
                    local_id = local.id
                result_id = snapshot.id

            case SyncAction.MERGE:
                local = _require(local, "local copy", outcome)
                remote = _require(remote, "remote copy", outcome)
                resolution = _require(plan.resolution, "resolution", outcome)
                rebased = self._rebased(
                    local, remote, resolution.resolved_fields
                )
                if direction.pushes:
                    snapshot = self._with_retry(
                        self.adapter.apply, item_type, rebased
                    )
                    self.store.save(snapshot.to_record())
                else:
                    # Local edits stay pending on top of the remote revision
                    self.store.save(rebased)

        return ItemResult(
            item_id=result_id,
            item_type=item_type,
            classification=outcome.classification,
            action=plan.action,
            applied=True,
            error=plan.reason,
            local_id=local_id,
        )

    @staticmethod
    def _rebased(
        local: WorkItemRecord,
        remote: RemoteSnapshot,
        fields: dict[str, Any] | None,
    ) -> WorkItemRecord:
        """A record holding *fields* whose baseline is the remote snapshot."""
        return local.model_copy(
            update={
                "fields": dict(fields if fields is not None else local.fields),
                "revision": remote.revision,
                "baseline": dict(remote.fields),
                "synced_hash": fields_hash(remote.fields),
                "tombstone": False,
                "deleted_at": None,
            }
        )

    # ------------------------------------------------------------------
    # Finalizing
    # ------------------------------------------------------------------

    def _write_final_metadata(
        self,
        base: SyncMetadata,
        results: list[ItemResult],
        started: float,
        status: str,
        completed_at: str | None = None,
        error: str | None = None,
    ) -> None:
        """Overwrite metadata with the real outcome of the run.

        Only settled items are counted: cancelled items are left out and
        failed items are counted under ``errored``.
        """
        counts: Counter[str] = Counter()
        for r in results:
            if r.error == CANCELLED:
                continue
            if not r.success:
                counts["errored"] += 1
            elif r.classification is not None:
                counts[r.classification.value] += 1

        completed = completed_at or _now()
        finalized = status in ("succeeded", "partial", CANCELLED)
        try:
            meta = base.model_copy(
                update={
                    "last_sync_at": completed if finalized else base.last_sync_at,
                    "item_counts": {
                        t: self.store.count(t) for t in self.item_types
                    },
                    "classification_counts": dict(counts),
                    "cache_size_bytes": self.store.cache_size_bytes(),
                    "status": status,
                    "completed_at": completed,
                    "elapsed_seconds": round(time.monotonic() - started, 3),
                    "error": error,
                }
            )
            self.store.write_metadata(meta)
        except OSError as exc:
            logger.error("Failed to write sync metadata: %s", exc)
            raise
