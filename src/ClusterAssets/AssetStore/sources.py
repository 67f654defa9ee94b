"""Provenance records and cache entries.

A :class:`FetchedFrom` node records a direct download from a URL verified
against a content hash.  An :class:`ExtractedFrom` node records a member of an
archive and points at the archive's own source, forming a backward-only chain
that is acyclic by construction.  Nodes are frozen and may be shared by any
number of children.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .checksums import ContentHash
from .resources import Resource

__all__ = [
    "Asset",
    "ExtractedFrom",
    "FetchedFrom",
    "Source",
    "source_to_mapping",
]


@dataclass(frozen=True)
class FetchedFrom:
    """Root provenance node for an artifact fetched from ``url``.

    Examples:
        >>> from ClusterAssets.AssetStore.checksums import ContentHash
        >>> FetchedFrom("https://example.org/app.tgz", ContentHash.from_string("a" * 32)).key()
        'https://example.org/app.tgz'
    """

    url: str
    hash: ContentHash

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("FetchedFrom requires a non-empty url")

    @property
    def parent(self) -> None:
        return None

    def key(self) -> str:
        return self.url

    def __str__(self) -> str:
        return f"Source[{self.key()}]"


@dataclass(frozen=True)
class ExtractedFrom:
    """Provenance node for ``extract_path`` inside the archive described by ``parent``."""

    parent: Optional["Source"]
    extract_path: str

    def __post_init__(self) -> None:
        if not self.extract_path:
            raise ValueError("ExtractedFrom requires a non-empty extract_path")

    def key(self) -> str:
        if self.parent is None:
            return self.extract_path
        return f"{self.parent.key()}/{self.extract_path}"

    def __str__(self) -> str:
        return f"Source[{self.key()}]"


Source = Union[FetchedFrom, ExtractedFrom]


def source_to_mapping(source: Source) -> Dict[str, Any]:
    """Render ``source`` and its ancestors as nested dictionaries."""

    if isinstance(source, FetchedFrom):
        return {
            "key": source.key(),
            "url": source.url,
            "hash": str(source.hash),
        }
    payload: Dict[str, Any] = {
        "key": source.key(),
        "extract_from_archive": source.extract_path,
    }
    if source.parent is not None:
        payload["parent"] = source_to_mapping(source.parent)
    return payload


@dataclass(frozen=True)
class Asset:
    """One entry of the asset store.

    Attributes:
        key: Structural key, usually the base file name. Not unique.
        asset_path: Primary URL for fetched files, archive-relative path for
            extracted members.
        resource: Readable content.
        source: Provenance, or ``None`` for fixtures registered without one.
    """

    key: str
    asset_path: str
    resource: Resource
    source: Optional[Source] = None
