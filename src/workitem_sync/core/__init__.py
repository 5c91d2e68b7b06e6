"""Remote client and async helpers shared by the sync engine."""

from .async_utils import run_sync, run_sync_limited
from .client import AzureDevOpsClient

__all__ = ["AzureDevOpsClient", "run_sync", "run_sync_limited"]
