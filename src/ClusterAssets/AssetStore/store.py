# === NAVMAP v1 ===
# {
#   "module": "ClusterAssets.AssetStore.store",
#   "purpose": "Register, expand, and resolve content-addressed cluster assets",
#   "sections": [
#     {"id": "helpers", "name": "Identifier Helpers", "anchor": "HLP", "kind": "helpers"},
#     {"id": "assetresource", "name": "AssetResource", "anchor": "RES", "kind": "class"},
#     {"id": "assetstore", "name": "AssetStore", "anchor": "STO", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Content-addressed store for cluster provisioning assets.

Identifiers take one of two forms::

    https://mirror-a/app.tar.gz,https://mirror-b/app.tar.gz
    sha256:<hex>@https://mirror-a/app.tar.gz,https://mirror-b/app.tar.gz

The first URL is the primary URL: it names the asset and the cache file no
matter which mirror served the bytes.  When no hash is given, one is
discovered from the servers' ``ETag`` headers.  Downloads land in
``<cache_dir>/<hash>_<name>`` and tarballs are expanded once into
``<cache_dir>/extracted/<name>``, each member becoming an asset whose source
points back at the archive.
"""

from __future__ import annotations

import functools
import logging
import os
import posixpath
import re
import time
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

import httpx

from .checksums import ContentHash
from .download import download_url, hash_from_http_header
from .errors import (
    AmbiguousAssetError,
    AssetNotFoundError,
    DownloadFailure,
    ExtractionError,
    HashDiscoveryError,
    IdentifierFormatError,
)
from .filesystem import (
    MAX_FILENAME_LENGTH,
    Extractor,
    extract_tarball,
    is_archive_name,
    iter_regular_files,
    sanitize_filename,
)
from .resources import FileResource, StringResource
from .settings import AssetStoreSettings, get_default_settings
from .sources import Asset, ExtractedFrom, FetchedFrom, Source

__all__ = ["AssetResource", "AssetStore"]

LOGGER = logging.getLogger("ClusterAssets.AssetStore.store")

_URL_PREFIXES = ("http://", "https://")

# Room left in a cache file name for the ``.part`` and ``.tmp-<ns>`` siblings.
_CACHE_NAME_RESERVE = 32


def _split_urls(text: str) -> List[str]:
    urls = [part.strip() for part in text.split(",")]
    for url in urls:
        if not url:
            raise IdentifierFormatError(f"empty URL in identifier: {text!r}")
        if not url.startswith(_URL_PREFIXES):
            raise IdentifierFormatError(f"unsupported URL scheme in identifier: {url!r}")
    return urls


def _url_basename(url: str) -> str:
    parsed = urlparse(url)
    return posixpath.basename(parsed.path.rstrip("/")) or parsed.netloc


class AssetResource:
    """Resource handed out by the store that also reports its provenance."""

    def __init__(self, asset: Asset) -> None:
        self._asset = asset

    @property
    def asset(self) -> Asset:
        return self._asset

    @property
    def key(self) -> str:
        return self._asset.key

    @property
    def asset_path(self) -> str:
        return self._asset.asset_path

    def open(self) -> BinaryIO:
        return self._asset.resource.open()

    def get_source(self) -> Optional[Source]:
        return self._asset.source

    def __repr__(self) -> str:
        return f"AssetResource(key={self.key!r}, asset_path={self.asset_path!r})"


class AssetStore:
    """Ordered, append-only collection of assets rooted at a cache directory.

    The store is meant for a single writer.  :meth:`add` appends to the
    collection and writes to the cache directory without any locking, so calls
    must be serialised by the caller.  The ``find*`` methods only read the
    collection and may run concurrently with each other, but never alongside
    :meth:`add`; multi-threaded hosts should wrap the store in a read-write
    lock.

    Args:
        cache_dir: Root of the on-disk cache; defaults to
            ``settings.cache_dir``.  Nothing is created until the first
            registration.
        settings: Store settings; defaults to the process settings.
        extractor: Callable expanding ``(archive, target_dir)``; defaults to
            :func:`extract_tarball` with the configured ``tar`` binary.
        client: HTTPX client for discovery and downloads; defaults to the
            shared client from :mod:`ClusterAssets.AssetStore.net`.
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        *,
        settings: Optional[AssetStoreSettings] = None,
        extractor: Optional[Extractor] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or get_default_settings()
        self.cache_dir = Path(cache_dir) if cache_dir is not None else self.settings.cache_dir
        self._extractor: Extractor = extractor or functools.partial(
            extract_tarball, tar_command=self.settings.extraction.tar_command
        )
        self._client = client
        self._assets: List[Asset] = []

    @property
    def assets(self) -> Tuple[Asset, ...]:
        return tuple(self._assets)

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[Asset]:
        return iter(tuple(self._assets))

    # --- Registration -----------------------------------------------------

    def add(self, identifier: str) -> Asset:
        """Fetch, verify, and register the asset named by ``identifier``.

        Returns:
            The registered top-level asset.  Members of an expanded archive are
            registered after it.

        Raises:
            IdentifierFormatError: If ``identifier`` matches neither grammar.
            HashFormatError: If the hash literal cannot be parsed.
            HashDiscoveryError: If no URL advertises a usable hash.
            DownloadFailure: If no URL downloads and verifies.
            ExtractionError: If an archive cannot be expanded.
        """

        candidate = identifier.strip()
        if candidate.startswith(_URL_PREFIXES):
            return self._add_urls(_split_urls(candidate), None)

        index = candidate.find("@http://")
        if index == -1:
            index = candidate.find("@https://")
        if index != -1:
            expected_hash = ContentHash.from_string(candidate[:index])
            return self._add_urls(_split_urls(candidate[index + 1 :]), expected_hash)

        raise IdentifierFormatError(f"unrecognized identifier format: {identifier!r}")

    def add_for_test(self, key: str, path: str, content: str) -> Asset:
        """Register an in-memory asset without touching the network or disk."""

        asset = Asset(key=key, asset_path=path, resource=StringResource(content))
        self._assets.append(asset)
        return asset

    def cache_path_for(self, urls: Sequence[str], content_hash: ContentHash) -> Path:
        """Return the deterministic cache file for ``urls`` under ``content_hash``.

        The primary URL's basename is shortened as needed so the whole
        ``<hash>_<name>`` component fits a single path component.
        """

        if not urls:
            raise IdentifierFormatError("no urls were specified")
        prefix = f"{content_hash}_"
        budget = MAX_FILENAME_LENGTH - _CACHE_NAME_RESERVE - len(prefix)
        return self.cache_dir / f"{prefix}{sanitize_filename(_url_basename(urls[0]), budget)}"

    def _discover_hash(self, urls: Sequence[str]) -> ContentHash:
        last_error: Optional[HashDiscoveryError] = None
        for url in urls:
            try:
                return hash_from_http_header(url, config=self.settings.download, client=self._client)
            except HashDiscoveryError as exc:
                LOGGER.warning(
                    "unable to get hash",
                    extra={"stage": "discover", "url": url, "error": str(exc)},
                )
                last_error = exc
        raise HashDiscoveryError(f"unable to determine hash for {', '.join(urls)}") from last_error

    def _download_first(self, urls: Sequence[str], local_file: Path, content_hash: ContentHash) -> str:
        last_error: Optional[DownloadFailure] = None
        for url in urls:
            try:
                result = download_url(
                    url,
                    local_file,
                    content_hash,
                    config=self.settings.download,
                    client=self._client,
                )
            except DownloadFailure as exc:
                LOGGER.warning(
                    "error downloading url",
                    extra={"stage": "download", "url": url, "error": str(exc)},
                )
                last_error = exc
                continue
            return result.url
        if last_error is None:
            raise DownloadFailure("no urls were specified")
        raise last_error

    def _add_urls(self, urls: Sequence[str], content_hash: Optional[ContentHash]) -> Asset:
        if not urls:
            raise IdentifierFormatError("no urls were specified")

        if content_hash is None:
            content_hash = self._discover_hash(urls)

        primary_url = urls[0]
        local_file = self.cache_path_for(urls, content_hash)
        served_by = self._download_first(urls, local_file, content_hash)

        source = FetchedFrom(url=primary_url, hash=content_hash)
        asset = Asset(
            key=_url_basename(primary_url),
            asset_path=primary_url,
            resource=FileResource(local_file),
            source=source,
        )
        self._assets.append(asset)
        LOGGER.info(
            "added asset",
            extra={
                "stage": "register",
                "key": asset.key,
                "path": str(local_file),
                "served_by": served_by,
            },
        )

        if is_archive_name(local_file.name):
            self.expand_archive(source, local_file)
        return asset

    # --- Archive expansion ------------------------------------------------

    def extraction_dir_for(self, archive_file: Path) -> Path:
        return self.cache_dir / "extracted" / Path(archive_file).name

    def expand_archive(self, archive_source: Source, archive_file: Path) -> List[Asset]:
        """Expand ``archive_file`` once and register each member as an asset.

        Extraction runs into ``<dir>.tmp-<ns>`` and is renamed into place only
        on success, so the final directory never holds partial content.  An
        existing directory is reused as-is.  Members are appended only once
        the whole tree has been walked.
        """

        archive_file = Path(archive_file)
        extracted = self.extraction_dir_for(archive_file)

        if not extracted.exists():
            staging = extracted.with_name(f"{extracted.name}.tmp-{time.time_ns()}")
            try:
                staging.mkdir(parents=True, mode=0o755)
            except OSError as exc:
                raise ExtractionError(f"error creating directory {staging}: {exc}") from exc

            self._extractor(archive_file, staging)

            try:
                os.rename(staging, extracted)
            except OSError as exc:
                raise ExtractionError(
                    f"error renaming extracted temp dir {staging} -> {extracted}: {exc}"
                ) from exc
        else:
            LOGGER.debug(
                "reusing extracted archive",
                extra={"stage": "extract", "path": str(extracted)},
            )

        children: List[Asset] = []
        try:
            for local_path, relative_path in iter_regular_files(extracted):
                children.append(
                    Asset(
                        key=local_path.name,
                        asset_path=relative_path,
                        resource=FileResource(local_path),
                        source=ExtractedFrom(parent=archive_source, extract_path=relative_path),
                    )
                )
        except ExtractionError as exc:
            raise ExtractionError(f"error adding expanded asset files in {extracted}: {exc}") from exc

        self._assets.extend(children)
        LOGGER.info(
            "expanded archive",
            extra={
                "stage": "extract",
                "archive": str(archive_file),
                "members": len(children),
            },
        )
        return children

    # --- Resolution -------------------------------------------------------

    def find_matches(self, pattern: Union[str, re.Pattern[str]]) -> Dict[str, AssetResource]:
        """Return ``{key: resource}`` for assets whose path matches ``pattern``.

        Assets sharing a key collapse to the last one registered.
        """

        expr = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        matches: Dict[str, AssetResource] = {}
        for asset in self._assets:
            if expr.search(asset.asset_path):
                LOGGER.debug(
                    "asset matched",
                    extra={"stage": "resolve", "pattern": expr.pattern, "asset_path": asset.asset_path},
                )
                matches[asset.key] = AssetResource(asset)
        LOGGER.info(
            "matching assets",
            extra={"stage": "resolve", "pattern": expr.pattern, "matches": len(matches)},
        )
        return matches

    def find_match(self, pattern: Union[str, re.Pattern[str]]) -> Tuple[str, AssetResource]:
        """Return the single ``(key, resource)`` whose path matches ``pattern``.

        Raises:
            AssetNotFoundError: If nothing matches.
            AmbiguousAssetError: If more than one key matches.
        """

        expr = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)
        matches = self.find_matches(expr)
        if not matches:
            raise AssetNotFoundError(f"found no matching assets for expr: {expr.pattern!r}")
        if len(matches) > 1:
            raise AmbiguousAssetError(f"found multiple matching assets for expr: {expr.pattern!r}")
        ((key, resource),) = matches.items()
        LOGGER.info(
            "found single matching asset",
            extra={"stage": "resolve", "pattern": expr.pattern, "key": key},
        )
        return key, resource

    def find(self, key: str, path_suffix: str = "") -> Optional[AssetResource]:
        """Resolve ``key``, optionally narrowed to asset paths ending in ``path_suffix``.

        Returns:
            The matching resource, or ``None`` when nothing matches.

        Raises:
            AmbiguousAssetError: If several assets remain after filtering.
        """

        matches = [
            asset
            for asset in self._assets
            if asset.key == key and (not path_suffix or asset.asset_path.endswith(path_suffix))
        ]
        if not matches:
            return None
        if len(matches) == 1:
            LOGGER.info(
                "resolved asset",
                extra={
                    "stage": "resolve",
                    "key": key,
                    "path_suffix": path_suffix,
                    "asset_path": matches[0].asset_path,
                },
            )
            return AssetResource(matches[0])

        raise AmbiguousAssetError(
            f"found multiple matching assets for key {key!r}: "
            + ", ".join(asset.asset_path for asset in matches)
        )
