"""Tests for the unified config schema and its Config adapter."""

import pytest
from pydantic import ValidationError

from workitem_sync.config import Config
from workitem_sync.config_schema import (
    DEFAULT_WORK_ITEM_TYPES,
    AzureConfig,
    SyncSettings,
    UnifiedConfig,
    build_config,
    to_legacy_config,
)


class TestDefaults:
    def test_unified_config_defaults(self):
        unified = UnifiedConfig()

        assert unified.azure.base_url == "https://dev.azure.com"
        assert unified.azure.max_parallel_requests == 5
        assert unified.sync.cache_root == ".claude/azure"
        assert unified.sync.direction == "both"
        assert unified.sync.scope == "quick"
        assert unified.sync.quick_window_days == 7
        assert unified.sync.conflict_strategy == "field-merge"
        assert unified.sync.tombstone_retention_days == 30
        assert unified.sync.work_item_types == DEFAULT_WORK_ITEM_TYPES
        assert unified.logging.level == "INFO"

    def test_build_config_empty(self):
        assert build_config({}) == UnifiedConfig()

    def test_build_config_partial_section(self):
        unified = build_config({"sync": {"direction": "pull"}})

        assert unified.sync.direction == "pull"
        assert unified.azure == AzureConfig()


class TestValidation:
    @pytest.mark.parametrize("value", [0, 101])
    def test_max_parallel_bounds(self, value):
        with pytest.raises(ValidationError):
            AzureConfig(max_parallel_requests=value)

    def test_unknown_direction(self):
        with pytest.raises(ValidationError):
            SyncSettings(direction="sideways")

    def test_window_must_be_positive(self):
        with pytest.raises(ValidationError):
            SyncSettings(quick_window_days=0)

    def test_frozen(self):
        settings = SyncSettings()
        with pytest.raises(ValidationError):
            settings.scope = "full"  # type: ignore[misc]


class TestToLegacyConfig:
    def test_flattens_sections(self):
        unified = UnifiedConfig(
            azure=AzureConfig(
                organization="contoso",
                project="Apollo",
                pat="pat",
                timeout_seconds=10,
            ),
            sync=SyncSettings(
                cache_root="/var/cache/azure",
                retry_attempts=5,
                stale_run_seconds=60,
            ),
        )

        config = to_legacy_config(unified)

        assert isinstance(config, Config)
        assert config.organization == "contoso"
        assert config.timeout_seconds == 10
        assert config.cache_root == "/var/cache/azure"
        assert config.retry_attempts == 5
        assert config.stale_run_seconds == 60
        assert config.work_item_types == DEFAULT_WORK_ITEM_TYPES

    def test_overrides_win(self):
        unified = UnifiedConfig(
            azure=AzureConfig(organization="yaml-org", project="yaml-proj")
        )

        config = to_legacy_config(
            unified,
            cli_overrides={"project": "cli-proj", "insecure": True, "debug": True},
        )

        assert config.organization == "yaml-org"
        assert config.project == "cli-proj"
        assert config.insecure is True
        assert config.debug is True

    def test_missing_credentials_become_empty(self):
        config = to_legacy_config(UnifiedConfig())

        assert (config.organization, config.project, config.pat) == ("", "", "")

    def test_work_item_types_copied(self):
        unified = UnifiedConfig()
        config = to_legacy_config(unified)

        config.work_item_types["Bug"] = "bugs"

        assert "Bug" not in unified.sync.work_item_types
