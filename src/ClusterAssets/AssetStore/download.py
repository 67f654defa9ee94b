"""Networking utilities for asset downloads.

This module is the transport collaborator of the asset store: it discovers
content hashes from ``ETag`` headers, streams artifacts into the cache through
the shared HTTPX client, verifies them against their expected hash while
streaming, and retries transient failures of a single URL with exponential
backoff.  Choosing between mirrors is left to the store.
"""

from __future__ import annotations

import contextlib
import logging
import os
import random
import ssl
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .checksums import ContentHash
from .errors import DownloadFailure, HashDiscoveryError, HashFormatError
from .net import get_http_client
from .settings import DownloadConfiguration, get_default_settings

__all__ = [
    "DownloadResult",
    "download_url",
    "hash_from_http_header",
    "is_retryable_error",
    "retry_with_backoff",
]

T = TypeVar("T")

LOGGER = logging.getLogger("ClusterAssets.AssetStore.download")

_RETRYABLE_HTTP_STATUSES = {408, 425, 429}
_ETAG_MD5_LENGTH = 32


@dataclass(slots=True)
class DownloadResult:
    """Result metadata for a completed download.

    Attributes:
        url: URL that produced the file.
        path: Final location of the verified file.
        status: ``fresh`` when bytes were transferred, ``cached`` when a valid
            file was already present.
        hash: Verified content hash.
        bytes_downloaded: Number of body bytes transferred by this call.
    """

    url: str
    path: Path
    status: str
    hash: ContentHash
    bytes_downloaded: int


def _is_retryable_status(status_code: Optional[int]) -> bool:
    if status_code is None:
        return True
    if status_code >= 500:
        return True
    return status_code in _RETRYABLE_HTTP_STATUSES


def is_retryable_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` represents a retryable network failure."""

    if isinstance(exc, DownloadFailure):
        return exc.retryable
    if isinstance(exc, ssl.SSLError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return _is_retryable_status(exc.response.status_code)
    if isinstance(exc, (httpx.TransportError, httpx.RequestError)):
        return True
    return False


def retry_with_backoff(
    func: Callable[[], T],
    *,
    retryable: Callable[[BaseException], bool],
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    jitter: float = 0.5,
    callback: Optional[Callable[[int, BaseException, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute ``func`` with exponential backoff until it succeeds."""

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    class _BackoffWait(wait_base):
        def __call__(self, retry_state) -> float:  # type: ignore[override]
            attempt_number = max(retry_state.attempt_number, 1)
            delay = backoff_base * (2 ** (attempt_number - 1))
            if jitter > 0:
                delay += random.uniform(0.0, jitter)
            delay = max(delay, 0.0)
            setattr(retry_state.retry_object, "_asset_retry_delay", delay)
            return delay

    def _before_sleep(retry_state) -> None:
        if callback is None or retry_state.outcome is None or not retry_state.outcome.failed:
            return
        delay = getattr(retry_state.retry_object, "_asset_retry_delay", 0.0)
        callback(retry_state.attempt_number, retry_state.outcome.exception(), delay)

    controller = Retrying(
        retry=retry_if_exception(retryable),
        wait=_BackoffWait(),
        stop=stop_after_attempt(max_attempts),
        sleep=sleep,
        reraise=True,
        before_sleep=_before_sleep,
    )
    return controller(func)


def hash_from_http_header(
    url: str,
    *,
    config: Optional[DownloadConfiguration] = None,
    client: Optional[httpx.Client] = None,
) -> ContentHash:
    """Discover an MD5 content hash for ``url`` from its ``ETag`` header.

    Args:
        url: Candidate artifact URL.
        config: Transport settings; defaults to the process settings.
        client: Explicit HTTPX client; defaults to the shared client.

    Returns:
        The MD5 :class:`ContentHash` advertised by the server.

    Raises:
        HashDiscoveryError: If the request fails or the entity tag is not a
            32-character digest.
    """

    cfg = config or get_default_settings().download
    http = client or get_http_client(cfg)
    LOGGER.info("doing HTTP HEAD", extra={"stage": "discover", "url": url})
    try:
        response = http.head(url)
    except httpx.HTTPError as exc:
        raise HashDiscoveryError(f"error doing HEAD on {url!r}: {exc}") from exc

    if not response.is_success:
        raise HashDiscoveryError(
            f"unexpected HTTP status {response.status_code} from HEAD on {url!r}"
        )

    etag = response.headers.get("ETag", "").strip().strip("'\"")
    if len(etag) == _ETAG_MD5_LENGTH:
        try:
            return ContentHash.from_digest("md5", etag)
        except HashFormatError as exc:
            raise HashDiscoveryError(f"unable to parse ETag from {url!r}: {exc}") from exc

    raise HashDiscoveryError(f"unable to determine hash from HTTP HEAD: {url!r}")


def _discard_partial(part_path: Path, url: str) -> None:
    try:
        part_path.unlink(missing_ok=True)
    except OSError as exc:
        raise DownloadFailure(
            f"failed to remove partial download {part_path}: {exc}", url=url
        ) from exc


def _stream_to_destination(
    *,
    http: httpx.Client,
    url: str,
    destination: Path,
    expected_hash: ContentHash,
    config: DownloadConfiguration,
) -> int:
    part_path = destination.with_name(destination.name + ".part")
    hasher = expected_hash.hasher()
    bytes_downloaded = 0
    try:
        part_path.parent.mkdir(parents=True, exist_ok=True)
        with http.stream("GET", url) as response:
            if not response.is_success:
                raise DownloadFailure(
                    f"unexpected HTTP status {response.status_code} from {url}",
                    url=url,
                    status_code=response.status_code,
                    retryable=_is_retryable_status(response.status_code),
                )
            with part_path.open("wb") as stream:
                for chunk in response.iter_bytes(config.chunk_size):
                    if not chunk:
                        continue
                    stream.write(chunk)
                    hasher.update(chunk)
                    bytes_downloaded += len(chunk)
    except (DownloadFailure, httpx.HTTPError):
        _discard_partial(part_path, url)
        raise
    except OSError as exc:
        with contextlib.suppress(OSError):
            part_path.unlink(missing_ok=True)
        LOGGER.error(
            "filesystem error during download",
            extra={"stage": "download", "url": url, "error": str(exc)},
        )
        raise DownloadFailure(f"failed to write download of {url}: {exc}", url=url) from exc

    actual = ContentHash(algorithm=expected_hash.algorithm, value=hasher.hexdigest())
    if actual != expected_hash:
        _discard_partial(part_path, url)
        raise DownloadFailure(
            f"hash mismatch for {url}: expected {expected_hash}, got {actual}",
            url=url,
        )

    try:
        os.replace(part_path, destination)
    except OSError as exc:
        with contextlib.suppress(OSError):
            part_path.unlink(missing_ok=True)
        raise DownloadFailure(f"failed to finalise download of {url}: {exc}", url=url) from exc
    return bytes_downloaded


def download_url(
    url: str,
    destination: Path,
    expected_hash: ContentHash,
    *,
    config: Optional[DownloadConfiguration] = None,
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DownloadResult:
    """Download ``url`` to ``destination`` and verify it against ``expected_hash``.

    A destination that already exists and matches the hash is reused without
    any network traffic.  Otherwise the body is streamed into a ``.part``
    sibling, hashed on the fly, and moved into place only once verified.

    Raises:
        DownloadFailure: If every attempt fails or the content does not match.
    """

    cfg = config or get_default_settings().download
    destination = Path(destination)

    if expected_hash.matches_file(destination):
        LOGGER.info(
            "cache hit",
            extra={"stage": "download", "url": url, "path": str(destination)},
        )
        return DownloadResult(
            url=url, path=destination, status="cached", hash=expected_hash, bytes_downloaded=0
        )

    http = client or get_http_client(cfg)

    def _attempt() -> int:
        return _stream_to_destination(
            http=http,
            url=url,
            destination=destination,
            expected_hash=expected_hash,
            config=cfg,
        )

    def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
        LOGGER.warning(
            "download retry",
            extra={
                "stage": "download",
                "url": url,
                "attempt": attempt,
                "sleep_sec": round(delay, 2),
                "error": str(exc),
            },
        )

    LOGGER.info(
        "downloading",
        extra={"stage": "download", "url": url, "path": str(destination)},
    )
    try:
        bytes_downloaded = retry_with_backoff(
            _attempt,
            retryable=is_retryable_error,
            max_attempts=cfg.max_retries + 1,
            backoff_base=cfg.backoff_factor,
            jitter=cfg.backoff_factor,
            callback=_on_retry,
            sleep=sleep,
        )
    except httpx.HTTPError as exc:
        raise DownloadFailure(
            f"error downloading {url}: {exc}",
            url=url,
            retryable=is_retryable_error(exc),
        ) from exc

    return DownloadResult(
        url=url,
        path=destination,
        status="fresh",
        hash=expected_hash,
        bytes_downloaded=bytes_downloaded,
    )
