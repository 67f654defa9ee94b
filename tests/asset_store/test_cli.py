# === NAVMAP v1 ===
# {
#   "module": "tests.asset_store.test_cli",
#   "purpose": "CLI coverage for the ``cluster-assets`` fetch and config commands.",
#   "sections": [
#     {"id": "fixtures", "name": "Fixtures", "anchor": "FIX", "kind": "fixtures"},
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""CLI coverage for the ``cluster-assets`` fetch and config commands."""

from __future__ import annotations

import hashlib
import json
import logging

import pytest
from typer.testing import CliRunner

from ClusterAssets.AssetStore import __version__
from ClusterAssets.AssetStore.cli import app
from ClusterAssets.AssetStore.logging_utils import LOGGER_NAME
from ClusterAssets.AssetStore.testing import build_tarball, serve_routes, use_mock_http_client

ARCHIVE_URL = "https://releases.example/v2.0.0/tools.tgz"
ARCHIVE = build_tarball({"bin/server": b"server", "bin/client": b"client"})
ARCHIVE_SHA256 = hashlib.sha256(ARCHIVE).hexdigest()

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_package_logger():
    """The CLI installs handlers bound to the runner's streams; drop them afterwards."""

    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    propagate = logger.propagate
    level = logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
    logger.propagate = propagate
    logger.setLevel(level)


def test_version_flag_prints_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == f"cluster-assets {__version__}"


def test_fetch_json_emits_provenance_manifest(tmp_path) -> None:
    cache_dir = tmp_path / "cli-cache"

    with use_mock_http_client(serve_routes({ARCHIVE_URL: ARCHIVE})):
        result = runner.invoke(
            app,
            [
                "--log-level",
                "ERROR",
                "fetch",
                "--cache-dir",
                str(cache_dir),
                "--json",
                f"sha256:{ARCHIVE_SHA256}@{ARCHIVE_URL}",
            ],
        )

    assert result.exit_code == 0, result.output
    manifest = json.loads(result.stdout)
    assert [entry["key"] for entry in manifest] == ["tools.tgz", "client", "server"]
    assert manifest[0]["source"]["url"] == ARCHIVE_URL
    assert manifest[0]["source"]["hash"] == f"sha256:{ARCHIVE_SHA256}"
    member = manifest[2]
    assert member["asset_path"] == "bin/server"
    assert member["source"]["extract_from_archive"] == "bin/server"
    assert member["source"]["parent"]["url"] == ARCHIVE_URL
    assert (cache_dir / "extracted" / "tools.tgz" / "bin" / "server").exists()


def test_fetch_match_selects_single_asset(tmp_path) -> None:
    with use_mock_http_client(serve_routes({ARCHIVE_URL: ARCHIVE})):
        result = runner.invoke(
            app,
            [
                "--log-level",
                "ERROR",
                "fetch",
                "--cache-dir",
                str(tmp_path / "cli-cache"),
                "--match",
                "bin/client$",
                "--json",
                f"sha256:{ARCHIVE_SHA256}@{ARCHIVE_URL}",
            ],
        )

    assert result.exit_code == 0, result.output
    manifest = json.loads(result.stdout)
    assert [entry["asset_path"] for entry in manifest] == ["bin/client"]


def test_fetch_reports_store_errors_with_exit_code(tmp_path) -> None:
    result = runner.invoke(
        app,
        ["fetch", "--cache-dir", str(tmp_path / "cli-cache"), "ftp://example.org/tools.tgz"],
    )

    assert result.exit_code == 1
    assert "unrecognized identifier format" in result.output


def test_fetch_reports_ambiguous_match(tmp_path) -> None:
    with use_mock_http_client(serve_routes({ARCHIVE_URL: ARCHIVE})):
        result = runner.invoke(
            app,
            [
                "--log-level",
                "ERROR",
                "fetch",
                "--cache-dir",
                str(tmp_path / "cli-cache"),
                "--match",
                "bin/",
                f"sha256:{ARCHIVE_SHA256}@{ARCHIVE_URL}",
            ],
        )

    assert result.exit_code == 1
    assert "found multiple matching assets" in result.output


def test_config_show_reflects_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("CLUSTER_ASSETS_DOWNLOAD__TIMEOUT_SEC", "12.5")

    result = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["cache_dir"] == str(tmp_path / "env-cache")
    assert payload["download"]["timeout_sec"] == 12.5
    assert payload["extraction"]["tar_command"] == "tar"
