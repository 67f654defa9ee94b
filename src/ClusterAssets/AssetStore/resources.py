"""Readable resource abstractions consumed and exposed by the asset store.

A resource is anything that can produce a readable byte stream on demand.
Cached files and in-memory test fixtures both satisfy the protocol, and
resources handed out by the store additionally satisfy :class:`HasSource` so
downstream consumers can recover provenance without reaching into the store.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .sources import Source

__all__ = ["Resource", "HasSource", "FileResource", "StringResource", "read_all"]


@runtime_checkable
class Resource(Protocol):
    """Capability producing a fresh readable byte stream on every call."""

    def open(self) -> BinaryIO:
        """Return a binary stream positioned at the start of the content."""
        ...


@runtime_checkable
class HasSource(Protocol):
    """Capability exposing the provenance record of a resource."""

    def get_source(self) -> Optional["Source"]:
        """Return the :class:`Source` that produced the resource, if known."""
        ...


class FileResource:
    """Resource backed by a file on local storage."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def open(self) -> BinaryIO:
        return self.path.open("rb")

    def __repr__(self) -> str:
        return f"FileResource({str(self.path)!r})"


class StringResource:
    """Resource backed by an in-memory string, encoded as UTF-8."""

    def __init__(self, content: str) -> None:
        self.content = content

    def open(self) -> BinaryIO:
        return io.BytesIO(self.content.encode("utf-8"))

    def __repr__(self) -> str:
        return f"StringResource(<{len(self.content)} chars>)"


def read_all(resource: Resource) -> bytes:
    """Read and return the complete content of ``resource``."""

    with resource.open() as stream:
        return stream.read()
