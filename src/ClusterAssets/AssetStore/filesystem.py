# === NAVMAP v1 ===
# {
#   "module": "ClusterAssets.AssetStore.filesystem",
#   "purpose": "Provide filesystem utilities for sanitisation, archive extraction, and cache walks",
#   "sections": [
#     {"id": "sanitisation", "name": "Filename Sanitisation", "anchor": "SAN", "kind": "helpers"},
#     {"id": "archives", "name": "Archive Extraction Utilities", "anchor": "ARC", "kind": "api"},
#     {"id": "walk", "name": "Extracted Tree Walk", "anchor": "WLK", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Filesystem helpers for the asset cache.

Responsibilities include sanitising cache file names, expanding tarballs
through the system ``tar`` binary, and walking extracted trees in a stable
order so registration is deterministic across runs.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Tuple

from .errors import ExtractionError

__all__ = [
    "ARCHIVE_SUFFIXES",
    "MAX_FILENAME_LENGTH",
    "Extractor",
    "extract_tarball",
    "is_archive_name",
    "iter_regular_files",
    "sanitize_filename",
]

LOGGER = logging.getLogger("ClusterAssets.AssetStore.filesystem")

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz")

# Single path component limit (NAME_MAX) on common Linux and macOS filesystems.
MAX_FILENAME_LENGTH = 255

Extractor = Callable[[Path, Path], None]


def sanitize_filename(filename: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Return a filesystem-safe filename derived from ``filename``.

    Names longer than ``max_length`` keep their leading characters and any
    recognised archive suffix.
    """

    if max_length < 1:
        raise ValueError("max_length must be positive")
    original = filename
    safe = filename.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", safe)
    safe = safe.strip("._") or "asset"
    if len(safe) > max_length:
        suffix = next((s for s in ARCHIVE_SUFFIXES if safe.lower().endswith(s)), "")
        if len(suffix) >= max_length:
            suffix = ""
        safe = safe[: max_length - len(suffix)] + safe[len(safe) - len(suffix) :]
    if safe != original:
        LOGGER.debug(
            "sanitized unsafe filename",
            extra={"stage": "sanitize", "original": original, "sanitized": safe},
        )
    return safe


def is_archive_name(name: str) -> bool:
    """Return ``True`` when ``name`` carries a tar/gzip suffix (case-insensitive)."""

    return name.lower().endswith(ARCHIVE_SUFFIXES)


def extract_tarball(archive: Path, target: Path, *, tar_command: str = "tar") -> None:
    """Expand the gzip-compressed tarball ``archive`` into ``target``.

    Args:
        archive: Tarball on local storage.
        target: Existing directory receiving the archive members.
        tar_command: ``tar`` executable to invoke.

    Raises:
        ExtractionError: If the binary is missing or exits with a non-zero
            status; the combined output is attached to the exception.
    """

    # Absolute paths keep GNU tar from reading ``host:path`` names as remote archives.
    args = [tar_command, "zxf", str(Path(archive).resolve()), "-C", str(Path(target).resolve())]
    LOGGER.info("running extract command", extra={"stage": "extract", "command": args})
    try:
        completed = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise ExtractionError(f"error running {tar_command!r} for {archive}: {exc}") from exc

    output = completed.stdout.decode("utf-8", errors="replace")
    if completed.returncode != 0:
        raise ExtractionError(
            f"error expanding asset file {archive} (exit status {completed.returncode}): {output}",
            output=output,
        )


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def iter_regular_files(root: Path) -> Iterator[Tuple[Path, str]]:
    """Yield ``(absolute_path, posix_relative_path)`` for files under ``root``.

    Directories are skipped and visited in sorted order.  Errors while listing
    a directory propagate as :class:`ExtractionError`.
    """

    try:
        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
            dirnames.sort()
            current = Path(dirpath)
            for name in sorted(filenames):
                local_path = current / name
                if not local_path.is_file():
                    continue
                relative = local_path.relative_to(root)
                yield local_path, PurePosixPath(*relative.parts).as_posix()
    except (OSError, ValueError) as exc:
        raise ExtractionError(f"error descending into {root}: {exc}") from exc
