"""Shared fixtures for the asset_store test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from ClusterAssets.AssetStore.net import reset_http_client
from ClusterAssets.AssetStore.settings import (
    AssetStoreSettings,
    DownloadConfiguration,
    reset_default_settings,
)
from ClusterAssets.AssetStore.store import AssetStore


@pytest.fixture(autouse=True)
def _isolated_process_state(monkeypatch, tmp_path):
    """Keep shared settings and the shared HTTP client from leaking between tests."""

    monkeypatch.setenv("CLUSTER_ASSETS_CACHE_DIR", str(tmp_path / "env-cache"))
    reset_default_settings()
    reset_http_client()
    yield
    reset_http_client()
    reset_default_settings()


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def settings(cache_dir) -> AssetStoreSettings:
    return AssetStoreSettings(
        cache_dir=cache_dir,
        download=DownloadConfiguration(max_retries=0, backoff_factor=0.0),
    )


@pytest.fixture
def store(cache_dir, settings) -> AssetStore:
    return AssetStore(cache_dir, settings=settings)

