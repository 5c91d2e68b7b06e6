"""Unified configuration schema for workitem_sync.

Defines Pydantic models for the config file structure with dedicated
sections for the Azure DevOps connection, sync behaviour and logging, plus
an adapter onto the flat ``Config`` dataclass the engine consumes.

Usage:
    from workitem_sync.config_schema import build_config, to_legacy_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_legacy_config(unified, cli_overrides={"project": "Apollo"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_WORK_ITEM_TYPES: dict[str, str] = {
    "Feature": "features",
    "User Story": "stories",
    "Task": "tasks",
}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class AzureConfig(BaseModel):
    """Azure DevOps connection settings.

    All credential fields are optional here: env vars can supply them at
    runtime instead.
    """

    organization: str | None = Field(
        default=None, description="Azure DevOps organization"
    )
    project: str | None = Field(default=None, description="Project name")
    pat: str | None = Field(
        default=None, description="Personal access token"
    )
    base_url: str = Field(
        default="https://dev.azure.com",
        description="Service root (override for on-prem servers)",
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests during a sync run (1-100)",
    )
    timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Sync engine behaviour."""

    cache_root: str = Field(
        default=".claude/azure",
        description="Root directory of the cache and sync metadata",
    )
    direction: Literal["pull", "push", "both"] = "both"
    scope: Literal["quick", "full"] = "quick"
    quick_window_days: int = Field(default=7, ge=1, le=3650)
    work_item_types: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_WORK_ITEM_TYPES),
        description="Work item type -> cache partition directory",
    )
    conflict_strategy: str = "field-merge"
    retry_attempts: int = Field(default=3, ge=1, le=20)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    stale_run_seconds: int = Field(
        default=3600,
        ge=0,
        description="Age after which an in-progress marker is ignored",
    )
    tombstone_retention_days: int = Field(default=30, ge=0)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()`` is valid.
    """

    azure: AzureConfig = Field(default_factory=AzureConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the ``Config`` dataclass, applying
    caller overrides on top.

    Override keys: organization, project, pat, insecure, debug.

    The result is NOT validated -- call ``validate_config()`` separately.
    """
    from .config import Config

    overrides = cli_overrides or {}
    azure = unified.azure
    sync = unified.sync

    return Config(
        organization=overrides.get("organization")
        or azure.organization
        or "",
        project=overrides.get("project") or azure.project or "",
        pat=overrides.get("pat") or azure.pat or "",
        base_url=azure.base_url,
        insecure=overrides.get("insecure", False) or azure.insecure,
        debug=overrides.get("debug", False),
        max_parallel_requests=azure.max_parallel_requests,
        timeout_seconds=azure.timeout_seconds,
        cache_root=sync.cache_root,
        direction=sync.direction,
        scope=sync.scope,
        quick_window_days=sync.quick_window_days,
        work_item_types=dict(sync.work_item_types),
        conflict_strategy=sync.conflict_strategy,
        retry_attempts=sync.retry_attempts,
        retry_base_delay=sync.retry_base_delay,
        retry_max_delay=sync.retry_max_delay,
        stale_run_seconds=sync.stale_run_seconds,
        tombstone_retention_days=sync.tombstone_retention_days,
    )
