"""Runtime configuration for the sync engine.

Reads Azure DevOps connection settings and sync options from explicit
arguments, environment variables, .env files, and the YAML config.

Precedence (highest to lowest):
    Explicit args > Environment variables > .env file > YAML config > Defaults

Environment variables:
    AZURE_DEVOPS_ORG: Organization name (required)
    AZURE_DEVOPS_PROJECT: Project name (required)
    AZURE_DEVOPS_PAT: Personal access token (required)
    AZURE_DEVOPS_URL: Service root (optional, default: https://dev.azure.com)
    WORKITEM_SYNC_MAX_PARALLEL: Max concurrent requests (optional, default: 5)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .config_schema import (
    DEFAULT_WORK_ITEM_TYPES,
    UnifiedConfig,
    to_legacy_config,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_DIRECTIONS = ("pull", "push", "both")
_SCOPES = ("quick", "full")


@dataclass
class Config:
    organization: str
    project: str
    pat: str
    base_url: str = "https://dev.azure.com"
    insecure: bool = False
    debug: bool = False
    max_parallel_requests: int = 5
    timeout_seconds: float = 30.0
    cache_root: str = ".claude/azure"
    direction: str = "both"
    scope: str = "quick"
    quick_window_days: int = 7
    work_item_types: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_WORK_ITEM_TYPES)
    )
    conflict_strategy: str = "field-merge"
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    stale_run_seconds: int = 3600
    tombstone_retention_days: int = 30


def load_environment(project_root: Path | None = None) -> None:
    """Load ``.env`` and ``.claude/.env`` from *project_root* into os.environ.

    Existing environment variables are never overridden.
    """
    root = project_root or Path.cwd()
    for candidate in (root / ".env", root / ".claude" / ".env"):
        if candidate.exists():
            logger.debug("Loading environment from %s", candidate)
            load_dotenv(candidate, override=False)


def validate_config(config: Config) -> None:
    """Validate configuration values.

    Raises:
        ConfigurationError: If the endpoint is malformed, a credential is
            empty, or a sync option is out of range.
    """
    config.base_url = config.base_url.strip()
    if not config.base_url.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"Invalid Azure DevOps URL '{config.base_url}': must start with http:// or https://"
        )
    if not urlparse(config.base_url).hostname:
        raise ConfigurationError(
            f"Invalid Azure DevOps URL '{config.base_url}': URL must include a hostname"
        )
    config.base_url = config.base_url.removesuffix("/")

    if not config.organization.strip():
        raise ConfigurationError(
            "Azure DevOps organization cannot be empty. Set AZURE_DEVOPS_ORG."
        )
    if not config.project.strip():
        raise ConfigurationError(
            "Azure DevOps project cannot be empty. Set AZURE_DEVOPS_PROJECT."
        )
    if not config.pat.strip():
        raise ConfigurationError(
            "Azure DevOps credentials not configured. Set AZURE_DEVOPS_PAT."
        )

    if config.direction not in _DIRECTIONS:
        raise ConfigurationError(
            f"Invalid direction '{config.direction}': expected one of {_DIRECTIONS}"
        )
    if config.scope not in _SCOPES:
        raise ConfigurationError(
            f"Invalid scope '{config.scope}': expected one of {_SCOPES}"
        )
    if not config.work_item_types:
        raise ConfigurationError("At least one work item type is required")

    if config.insecure:
        logger.warning(
            "SSL verification disabled (insecure=True). Use only for development."
        )


def load_config(
    organization: str | None = None,
    project: str | None = None,
    pat: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    The caller is responsible for calling ``load_environment()`` first so
    that .env values are visible through ``os.getenv()``.

    Args:
        organization: Override organization.
        project: Override project.
        pat: Override personal access token.
        insecure: Skip SSL verification.
        debug: Enable debug logging.
        unified: Parsed YAML config; defaults when omitted.

    Returns:
        Validated Config instance.

    Raises:
        ConfigurationError: If required values are missing after checking
            all sources, or any value is invalid.
    """
    base = to_legacy_config(
        unified or UnifiedConfig(),
        cli_overrides={"insecure": insecure, "debug": debug},
    )

    base.organization = (
        organization or os.getenv("AZURE_DEVOPS_ORG") or base.organization
    )
    base.project = (
        project or os.getenv("AZURE_DEVOPS_PROJECT") or base.project
    )
    base.pat = pat or os.getenv("AZURE_DEVOPS_PAT") or base.pat
    base.base_url = os.getenv("AZURE_DEVOPS_URL") or base.base_url

    max_parallel_raw = os.getenv("WORKITEM_SYNC_MAX_PARALLEL")
    if max_parallel_raw is not None:
        try:
            max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ConfigurationError(
                f"Invalid WORKITEM_SYNC_MAX_PARALLEL '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= max_parallel <= 100):
            raise ConfigurationError(
                f"Invalid WORKITEM_SYNC_MAX_PARALLEL '{max_parallel_raw}': must be a number between 1 and 100"
            )
        base.max_parallel_requests = max_parallel

    validate_config(base)
    return base
