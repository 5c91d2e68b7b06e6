"""Remote adapter contract, retry helper, and the Azure DevOps adapter.

The adapter is a pure read-through / write-through view of the remote
service: it never caches.  Retrying is layered on top by the orchestrator
with ``call_with_retry`` so every adapter gets the same backoff policy.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol, TypeVar

from workitem_sync.core.client import AzureDevOpsClient
from workitem_sync.errors import (
    RateLimitedError,
    RemoteError,
    TransientRemoteError,
)
from workitem_sync.sync.models import RemoteSnapshot, WorkItemRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields the service maintains itself; never sent in a patch
READ_ONLY_FIELDS = frozenset(
    {
        "System.Id",
        "System.Rev",
        "System.WorkItemType",
        "System.TeamProject",
        "System.CreatedDate",
        "System.CreatedBy",
        "System.ChangedDate",
        "System.ChangedBy",
        "System.AuthorizedDate",
        "System.AuthorizedAs",
        "System.RevisedDate",
        "System.Watermark",
        "System.CommentCount",
        "System.PersonId",
        "System.NodeName",
        "System.BoardColumnDone",
    }
)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class RemoteAdapter(Protocol):
    """Protocol that all remote adapters must satisfy."""

    def list_changed(
        self, item_type: str, window_days: int | None
    ) -> list[int]:
        """Return ids of *item_type*, restricted to the last
        *window_days* days of changes unless *window_days* is ``None``.
        """
        ...  # pragma: no cover

    def fetch_detail(self, item_type: str, item_id: int) -> RemoteSnapshot:
        """Fetch one item.

        Raises:
            NotFoundError: If the item no longer exists remotely.
            TransientRemoteError: For retryable failures.
        """
        ...  # pragma: no cover

    def apply(self, item_type: str, record: WorkItemRecord) -> RemoteSnapshot:
        """Write *record* to the remote and return the authoritative
        post-write state (including the new revision).
        """
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call *func*, retrying ``TransientRemoteError`` with exponential backoff.

    The delay before retry *n* (0-based) is ``base_delay * 2**n`` capped at
    *max_delay*; a rate limit's ``retry_after`` raises the delay (still
    capped).  Non-transient errors propagate immediately.

    Raises:
        TransientRemoteError: The last failure once *attempts* are used up.
    """
    for attempt in range(attempts):
        try:
            return func(*args, **kwargs)
        except TransientRemoteError as exc:
            if attempt == attempts - 1:
                logger.error(
                    "Giving up on %s after %d attempts: %s",
                    getattr(func, "__name__", func),
                    attempts,
                    exc,
                )
                raise

            delay = base_delay * (2**attempt)
            if isinstance(exc, RateLimitedError) and exc.retry_after:
                delay = max(delay, exc.retry_after)
            delay = min(delay, max_delay)

            logger.warning(
                "Retrying %s in %.1fs (attempt %d/%d): %s",
                getattr(func, "__name__", func),
                delay,
                attempt + 1,
                attempts,
                exc,
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Azure DevOps
# ---------------------------------------------------------------------------


def _snapshot_from_payload(payload: Any, item_type: str) -> RemoteSnapshot:
    if not isinstance(payload, dict) or payload.get("id") is None:
        raise RemoteError(
            f"Malformed {item_type} payload from remote: {str(payload)[:200]}"
        )
    fields = dict(payload.get("fields") or {})
    return RemoteSnapshot(
        id=int(payload["id"]),
        type=str(fields.get("System.WorkItemType") or item_type),
        fields=fields,
        revision=int(payload.get("rev") or fields.get("System.Rev") or 0),
        changed_at=fields.get("System.ChangedDate"),
    )


class AzureDevOpsAdapter:
    """``RemoteAdapter`` backed by the Azure DevOps REST API.

    Args:
        client: Configured ``AzureDevOpsClient``.
    """

    def __init__(self, client: AzureDevOpsClient) -> None:
        self.client = client

    def list_changed(
        self, item_type: str, window_days: int | None
    ) -> list[int]:
        escaped = item_type.replace("'", "''")
        clauses = [
            "[System.TeamProject] = @project",
            f"[System.WorkItemType] = '{escaped}'",
        ]
        if window_days is not None:
            clauses.append(f"[System.ChangedDate] >= @Today-{int(window_days)}")
        wiql = (
            "SELECT [System.Id] FROM workitems WHERE "
            + " AND ".join(clauses)
            + " ORDER BY [System.ChangedDate] DESC"
        )
        ids = self.client.query_ids(wiql)
        logger.debug(
            "%d %s ids listed (window=%s)", len(ids), item_type, window_days
        )
        return ids

    def fetch_detail(self, item_type: str, item_id: int) -> RemoteSnapshot:
        return _snapshot_from_payload(
            self.client.get_work_item(item_id), item_type
        )

    def apply(self, item_type: str, record: WorkItemRecord) -> RemoteSnapshot:
        """Create a draft, or patch the fields changed since the baseline.

        Updates carry a ``test /rev`` operation, so a remote edit made since
        the record's revision is rejected with ``RemoteWriteConflict``.
        """
        if record.is_draft:
            create_ops = [
                {"op": "add", "path": f"/fields/{name}", "value": value}
                for name, value in record.fields.items()
                if name not in READ_ONLY_FIELDS
            ]
            payload = self.client.create_work_item(item_type, create_ops)
            return _snapshot_from_payload(payload, item_type)

        ops: list[dict[str, Any]] = [
            {"op": "test", "path": "/rev", "value": record.revision}
        ]
        for name, value in record.fields.items():
            if name in READ_ONLY_FIELDS:
                continue
            if name in record.baseline and record.baseline[name] == value:
                continue
            ops.append({"op": "add", "path": f"/fields/{name}", "value": value})
        for name in record.baseline:
            if name not in record.fields and name not in READ_ONLY_FIELDS:
                ops.append({"op": "remove", "path": f"/fields/{name}"})

        if len(ops) == 1:
            # Nothing writable changed; report the current remote state
            return self.fetch_detail(item_type, record.id)

        payload = self.client.update_work_item(record.id, ops)
        return _snapshot_from_payload(payload, item_type)
