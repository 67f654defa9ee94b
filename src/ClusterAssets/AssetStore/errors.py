"""Exception hierarchy shared across asset registration, download, and resolution.

The asset store spans identifier parsing, HTTP retrieval, archive expansion,
and lookup.  This module groups the failure modes into a small hierarchy so
caller code can react to high-level categories (for example, a malformed
identifier vs. an exhausted list of mirrors) while still having access to the
details attached by the lower layers.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "AssetStoreError",
    "ConfigurationError",
    "IdentifierFormatError",
    "HashFormatError",
    "HashDiscoveryError",
    "DownloadFailure",
    "ExtractionError",
    "AssetNotFoundError",
    "AmbiguousAssetError",
]


class AssetStoreError(RuntimeError):
    """Base exception for asset registration, download, or resolution failures."""


class ConfigurationError(AssetStoreError):
    """Raised when settings or environment overrides are invalid."""


class IdentifierFormatError(AssetStoreError):
    """Raised when an asset identifier does not follow a recognised grammar."""


class HashFormatError(AssetStoreError, ValueError):
    """Raised when a content hash literal cannot be parsed."""


class HashDiscoveryError(AssetStoreError):
    """Raised when no candidate URL yields a usable content hash."""


class DownloadFailure(AssetStoreError):
    """Raised when an HTTP download attempt fails or cannot be verified."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ExtractionError(AssetStoreError):
    """Raised when an archive cannot be expanded into the cache."""

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class AssetNotFoundError(AssetStoreError):
    """Raised when a pattern lookup that requires a result matches nothing."""


class AmbiguousAssetError(AssetStoreError):
    """Raised when a lookup expected one asset but matched several."""
