"""Test helpers for exercising the asset store without a real network.

:func:`use_mock_http_client` installs an HTTPX client backed by an arbitrary
transport (usually :class:`httpx.MockTransport`) as the shared client, and
:class:`RecordingExtractor` wraps an extractor to count invocations.
"""

from __future__ import annotations

import contextlib
import hashlib
import io
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import httpx

from .filesystem import Extractor, extract_tarball
from .net import configure_http_client, reset_http_client

__all__ = [
    "RecordingExtractor",
    "build_tarball",
    "serve_routes",
    "use_mock_http_client",
]


@contextlib.contextmanager
def use_mock_http_client(transport: httpx.BaseTransport, **client_kwargs) -> Iterator[httpx.Client]:
    """Temporarily install an HTTPX client backed by ``transport``."""

    client = httpx.Client(transport=transport, **client_kwargs)
    configure_http_client(client=client)
    try:
        yield client
    finally:
        reset_http_client()
        client.close()


@dataclass
class RecordingExtractor:
    """Extractor wrapper remembering every ``(archive, target)`` it was asked to expand.

    Setting ``max_calls`` makes any further invocation raise ``AssertionError``.
    """

    delegate: Extractor = extract_tarball
    max_calls: Optional[int] = None
    calls: List[Tuple[Path, Path]] = field(default_factory=list)

    def __call__(self, archive: Path, target: Path) -> None:
        if self.max_calls is not None and len(self.calls) >= self.max_calls:
            raise AssertionError(
                f"extraction attempted {len(self.calls) + 1} times; allowed {self.max_calls}"
            )
        self.calls.append((Path(archive), Path(target)))
        self.delegate(archive, target)


def build_tarball(members: Mapping[str, bytes]) -> bytes:
    """Return gzip-compressed tar bytes containing ``members`` (path → content)."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        directories: Dict[str, None] = {}
        for name in members:
            parts = name.split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                directories.setdefault("/".join(parts[:depth]), None)
        for directory in directories:
            info = tarfile.TarInfo(directory)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            archive.addfile(info)
        for name, content in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def serve_routes(
    routes: Mapping[str, bytes],
    *,
    etags: bool = False,
    requests: Optional[List[Tuple[str, str]]] = None,
) -> httpx.MockTransport:
    """Return a transport serving ``routes`` (URL → body) and 404 for anything else.

    Args:
        routes: Response bodies keyed by absolute URL.
        etags: Advertise the MD5 of each body as a quoted ``ETag``.
        requests: When given, every ``(method, url)`` handled is appended.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append((request.method, str(request.url)))
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404, request=request)
        headers = {"ETag": f'"{hashlib.md5(body).hexdigest()}"'} if etags else {}
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers, request=request)
        return httpx.Response(200, headers=headers, content=body, request=request)

    return httpx.MockTransport(handler)
