"""Public API for the content-addressed cluster asset store.

The store fetches artifacts named by ``URL[,URL...]`` or
``HASH@URL[,URL...]`` identifiers, verifies them against a content hash,
caches them under hash-derived file names, expands tarballs into addressable
members, and resolves assets by structural key or asset-path pattern.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .checksums import ContentHash
from .errors import (
    AmbiguousAssetError,
    AssetNotFoundError,
    AssetStoreError,
    ConfigurationError,
    DownloadFailure,
    ExtractionError,
    HashDiscoveryError,
    HashFormatError,
    IdentifierFormatError,
)
from .resources import FileResource, HasSource, Resource, StringResource
from .settings import AssetStoreSettings, get_default_settings
from .sources import Asset, ExtractedFrom, FetchedFrom, Source, source_to_mapping
from .store import AssetResource, AssetStore

__all__ = [
    "__version__",
    "AmbiguousAssetError",
    "Asset",
    "AssetNotFoundError",
    "AssetResource",
    "AssetStore",
    "AssetStoreError",
    "AssetStoreSettings",
    "ConfigurationError",
    "ContentHash",
    "DownloadFailure",
    "ExtractedFrom",
    "ExtractionError",
    "FetchedFrom",
    "FileResource",
    "HasSource",
    "HashDiscoveryError",
    "HashFormatError",
    "IdentifierFormatError",
    "Resource",
    "Source",
    "StringResource",
    "get_default_settings",
    "source_to_mapping",
]
