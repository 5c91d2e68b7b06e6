"""Exception taxonomy for the sync engine.

Errors fall into two groups:

* **Run-level** -- ``ConfigurationError``, ``RemoteEndpointError``,
  ``SyncInProgressError`` and unreadable metadata abort a run.
* **Item-level** -- ``TransientRemoteError`` (after retries),
  ``RemoteWriteConflict``, ``CacheWriteError``, ``StaleRevisionError`` are
  isolated to one work item and aggregated into the ``SyncReport``.

``NotFoundError`` is not an error path at all: it is how remote deletions
are detected.  ``CacheIntegrityError`` downgrades to a warning and a fresh
fetch.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync engine errors."""


class ConfigurationError(SyncError, ValueError):
    """Missing or invalid configuration (credentials, endpoint, values)."""


class SyncInProgressError(SyncError):
    """Another run on the same cache still appears to be in progress."""


# ---------------------------------------------------------------------------
# Remote errors
# ---------------------------------------------------------------------------


class RemoteError(SyncError):
    """Base class for failures reported by the remote service."""


class TransientRemoteError(RemoteError):
    """Retryable failure: timeout, connection reset, 5xx."""


class RateLimitedError(TransientRemoteError):
    """The remote asked us to slow down (HTTP 429).

    Args:
        message: Error description.
        retry_after: Seconds the server asked us to wait, if provided.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(RemoteError):
    """The requested work item does not exist remotely."""


class RemoteEndpointError(RemoteError):
    """The endpoint itself is unusable (auth rejected, bad URL)."""


class RemoteWriteConflict(RemoteError):
    """A write was rejected because the remote revision moved."""


# ---------------------------------------------------------------------------
# Cache errors
# ---------------------------------------------------------------------------


class CacheIntegrityError(SyncError):
    """A cached record is unreadable or its hash does not match its fields."""


class CacheWriteError(SyncError):
    """Persisting a record to the cache failed."""


class StaleRevisionError(SyncError):
    """Refused to persist a revision older than the cached one."""
