"""Fetch-and-verify coverage for ``AssetStore.add`` using HTTPX mock transports."""

from __future__ import annotations

import hashlib
import logging

import httpx
import pytest

from ClusterAssets.AssetStore.checksums import ContentHash
from ClusterAssets.AssetStore.errors import (
    DownloadFailure,
    HashDiscoveryError,
    HashFormatError,
    IdentifierFormatError,
)
from ClusterAssets.AssetStore.resources import read_all
from ClusterAssets.AssetStore.sources import FetchedFrom
from ClusterAssets.AssetStore.store import AssetStore
from ClusterAssets.AssetStore.testing import serve_routes, use_mock_http_client

PAYLOAD = b"#!/bin/sh\necho kubelet\n"
PAYLOAD_SHA256 = hashlib.sha256(PAYLOAD).hexdigest()
MIRROR_A = "http://mirror-a.example/v1/kubelet"
MIRROR_B = "http://mirror-b.example/v1/kubelet"


@pytest.mark.parametrize(
    "routes",
    [
        {MIRROR_A: PAYLOAD},
        {MIRROR_B: PAYLOAD},
        {MIRROR_A: b"tampered", MIRROR_B: PAYLOAD},
    ],
    ids=["primary-serves", "mirror-serves", "primary-corrupt"],
)
def test_add_with_hash_verifies_content_from_any_mirror(store, routes) -> None:
    """Whichever mirror serves, the resolved bytes must hash to the declared value."""

    with use_mock_http_client(serve_routes(routes)):
        asset = store.add(f"sha256:{PAYLOAD_SHA256}@{MIRROR_A},{MIRROR_B}")

    resource = store.find(asset.key)
    assert resource is not None
    assert hashlib.sha256(read_all(resource)).hexdigest() == PAYLOAD_SHA256


def test_add_registers_primary_url_metadata(store, cache_dir) -> None:
    with use_mock_http_client(serve_routes({MIRROR_B: PAYLOAD})):
        asset = store.add(f"{PAYLOAD_SHA256}@{MIRROR_A},{MIRROR_B}")

    expected_hash = ContentHash("sha256", PAYLOAD_SHA256)
    assert asset.key == "kubelet"
    assert asset.asset_path == MIRROR_A
    assert asset.source == FetchedFrom(url=MIRROR_A, hash=expected_hash)
    assert asset.resource.path == cache_dir / f"sha256:{PAYLOAD_SHA256}_kubelet"
    assert len(store) == 1


def test_add_twice_reuses_the_same_cache_file(store) -> None:
    identifier = f"sha256:{PAYLOAD_SHA256}@{MIRROR_A}"
    requests = []

    with use_mock_http_client(serve_routes({MIRROR_A: PAYLOAD}, requests=requests)):
        first = store.add(identifier)
        second = store.add(identifier)

    assert first.resource.path == second.resource.path
    assert len(store) == 2
    assert requests == [("GET", MIRROR_A)], "second add should hit the verified cache file"


def test_add_without_hash_discovers_md5_from_etag(store) -> None:
    requests = []

    with use_mock_http_client(serve_routes({MIRROR_A: PAYLOAD}, etags=True, requests=requests)):
        asset = store.add(MIRROR_A)

    assert asset.source.hash == ContentHash("md5", hashlib.md5(PAYLOAD).hexdigest())
    assert requests == [("HEAD", MIRROR_A), ("GET", MIRROR_A)]


def test_hash_discovery_falls_back_to_next_url(store, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="ClusterAssets.AssetStore")
    transport = serve_routes({MIRROR_B: PAYLOAD}, etags=True)

    with use_mock_http_client(transport):
        asset = store.add(f"{MIRROR_A},{MIRROR_B}")

    assert asset.asset_path == MIRROR_A
    assert any(
        record.message == "unable to get hash" and getattr(record, "url", None) == MIRROR_A
        for record in caplog.records
    )


def test_hash_discovery_exhaustion_fails(store) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"ETag": '"not-an-md5"'}, request=request)

    with use_mock_http_client(httpx.MockTransport(handler)):
        with pytest.raises(HashDiscoveryError, match="unable to determine hash"):
            store.add(f"{MIRROR_A},{MIRROR_B}")
    assert len(store) == 0


def test_all_downloads_failing_surfaces_last_error(store, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="ClusterAssets.AssetStore")

    with use_mock_http_client(serve_routes({MIRROR_A: b"wrong bytes"})):
        with pytest.raises(DownloadFailure) as excinfo:
            store.add(f"sha256:{PAYLOAD_SHA256}@{MIRROR_A},{MIRROR_B}")

    assert excinfo.value.url == MIRROR_B
    assert excinfo.value.status_code == 404
    warned = [r.url for r in caplog.records if r.message == "error downloading url"]
    assert warned == [MIRROR_A, MIRROR_B]
    assert len(store) == 0


def test_add_uses_explicit_client(cache_dir, settings) -> None:
    client = httpx.Client(transport=serve_routes({MIRROR_A: PAYLOAD}))
    store = AssetStore(cache_dir, settings=settings, client=client)

    asset = store.add(f"sha256:{PAYLOAD_SHA256}@{MIRROR_A}")

    assert read_all(asset.resource) == PAYLOAD
    client.close()


@pytest.mark.parametrize(
    "identifier",
    [
        "ftp://example.org/kubelet",
        "/opt/local/kubelet",
        "kubelet",
        "sha256:abc@ftp://example.org/kubelet",
    ],
)
def test_unrecognized_identifiers_are_rejected(store, identifier) -> None:
    with pytest.raises(IdentifierFormatError, match="unrecognized identifier format"):
        store.add(identifier)


@pytest.mark.parametrize(
    "identifier",
    [
        f"{MIRROR_A},,{MIRROR_B}",
        f"{MIRROR_A},ftp://mirror.example/kubelet",
    ],
)
def test_malformed_url_lists_are_rejected(store, identifier) -> None:
    with pytest.raises(IdentifierFormatError):
        store.add(identifier)


def test_bad_hash_literal_is_rejected_before_network(store) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        pytest.fail(f"unexpected request {request.method} {request.url}")

    with use_mock_http_client(httpx.MockTransport(handler)):
        with pytest.raises(HashFormatError):
            store.add(f"sha256:xyz@{MIRROR_A}")


def test_cache_path_uses_sanitized_primary_basename(store, cache_dir) -> None:
    content_hash = ContentHash("md5", "a" * 32)

    path = store.cache_path_for(
        ["https://example.org/dl/etcd%20v3.tar.gz?arch=amd64", MIRROR_B], content_hash
    )

    assert path == cache_dir / f"md5:{'a' * 32}_etcd_20v3.tar.gz"


def test_download_fallback_without_urls_raises_download_failure(store, cache_dir) -> None:
    content_hash = ContentHash("sha256", PAYLOAD_SHA256)

    with pytest.raises(DownloadFailure, match="no urls were specified"):
        store._download_first([], cache_dir / "kubelet", content_hash)


def test_structural_key_drops_query_string(store) -> None:
    url = f"{MIRROR_A}?arch=amd64"

    with use_mock_http_client(serve_routes({url: PAYLOAD})):
        asset = store.add(f"sha256:{PAYLOAD_SHA256}@{url}")

    assert asset.key == "kubelet"
    assert asset.asset_path == url
    assert store.find("kubelet") is not None
