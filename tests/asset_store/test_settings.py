"""Settings defaults, validation, and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ClusterAssets.AssetStore.errors import ConfigurationError
from ClusterAssets.AssetStore.settings import (
    AssetStoreSettings,
    DownloadConfiguration,
    LoggingConfiguration,
    get_default_settings,
    reset_default_settings,
)
from ClusterAssets.AssetStore.store import AssetStore


def test_environment_overrides_are_applied(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CLUSTER_ASSETS_CACHE_DIR", str(tmp_path / "from-env"))
    monkeypatch.setenv("CLUSTER_ASSETS_DOWNLOAD__MAX_RETRIES", "7")
    monkeypatch.setenv("CLUSTER_ASSETS_EXTRACTION__TAR_COMMAND", "gtar")
    monkeypatch.setenv("CLUSTER_ASSETS_LOGGING__LEVEL", "debug")

    settings = AssetStoreSettings()

    assert settings.cache_dir == tmp_path / "from-env"
    assert settings.download.max_retries == 7
    assert settings.extraction.tar_command == "gtar"
    assert settings.logging.level == "DEBUG"


def test_default_settings_are_memoised_until_reset(monkeypatch, tmp_path) -> None:
    first = get_default_settings()
    monkeypatch.setenv("CLUSTER_ASSETS_CACHE_DIR", str(tmp_path / "other"))

    assert get_default_settings() is first
    assert get_default_settings(copy=True) is not first

    reset_default_settings()
    assert get_default_settings().cache_dir == tmp_path / "other"


def test_invalid_environment_raises_configuration_error(monkeypatch) -> None:
    monkeypatch.setenv("CLUSTER_ASSETS_DOWNLOAD__MAX_RETRIES", "-1")

    with pytest.raises(ConfigurationError, match="invalid asset store settings"):
        get_default_settings()


def test_logging_level_is_validated() -> None:
    with pytest.raises(ValidationError):
        LoggingConfiguration(level="chatty")


def test_download_configuration_validates_assignment() -> None:
    config = DownloadConfiguration()

    with pytest.raises(ValidationError):
        config.timeout_sec = 0


def test_store_defaults_to_settings_cache_dir(tmp_path) -> None:
    settings = AssetStoreSettings(cache_dir=tmp_path / "configured")

    assert AssetStore(settings=settings).cache_dir == Path(tmp_path / "configured")
