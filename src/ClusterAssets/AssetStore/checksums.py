"""Content hash parsing, normalisation, and verification helpers.

Identifiers registered with the asset store may carry an expected digest either
as ``algorithm:value`` or as a bare hexadecimal string whose length implies the
algorithm.  Servers may also advertise an MD5 digest through their ``ETag``
header.  This module normalises those declarations into :class:`ContentHash`
values and exposes streaming utilities that compute digests without loading
entire release tarballs into memory.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from .errors import HashFormatError

__all__ = ["ContentHash", "SUPPORTED_ALGORITHMS"]

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")

_ALGORITHM_BY_LENGTH: Dict[int, str] = {32: "md5", 40: "sha1", 64: "sha256", 128: "sha512"}
_HEX_PATTERN = re.compile(r"[0-9a-f]+")
_FILE_CHUNK_SIZE = 1024 * 1024

LOGGER = logging.getLogger("ClusterAssets.AssetStore.checksums")


def _normalize_algorithm(algorithm: str) -> str:
    candidate = algorithm.strip().lower()
    if candidate not in SUPPORTED_ALGORITHMS:
        raise HashFormatError(f"unsupported hash algorithm '{candidate}'")
    return candidate


def _normalize_digest(algorithm: str, value: str) -> str:
    digest = value.strip().lower()
    if not _HEX_PATTERN.fullmatch(digest):
        raise HashFormatError(f"hash value must be a hexadecimal digest: {value!r}")
    expected_length = hashlib.new(algorithm).digest_size * 2
    if len(digest) != expected_length:
        raise HashFormatError(
            f"{algorithm} digest must have {expected_length} hex characters, got {len(digest)}"
        )
    return digest


@dataclass(slots=True, frozen=True)
class ContentHash:
    """Algorithm-tagged digest used to name and verify cached artifacts.

    Attributes:
        algorithm: Lowercase hash algorithm name (``md5``, ``sha1``, ``sha256``
            or ``sha512``).
        value: Lowercase hexadecimal digest.

    Examples:
        >>> str(ContentHash.from_string("a" * 64))
        'sha256:aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa'
    """

    algorithm: str
    value: str

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.value}"

    @classmethod
    def from_digest(cls, algorithm: str, value: str) -> "ContentHash":
        """Build a hash from an explicit algorithm and hexadecimal digest."""

        normalized = _normalize_algorithm(algorithm)
        return cls(algorithm=normalized, value=_normalize_digest(normalized, value))

    @classmethod
    def from_string(cls, text: str) -> "ContentHash":
        """Parse ``algorithm:value`` or a bare digest whose length names the algorithm."""

        if not isinstance(text, str) or not text.strip():
            raise HashFormatError("hash literal must be a non-empty string")
        candidate = text.strip()
        if ":" in candidate:
            algorithm, _, value = candidate.partition(":")
            return cls.from_digest(algorithm, value)
        algorithm = _ALGORITHM_BY_LENGTH.get(len(candidate))
        if algorithm is None:
            raise HashFormatError(f"unable to infer hash algorithm from {text!r}")
        return cls.from_digest(algorithm, candidate)

    @classmethod
    def of_bytes(cls, data: bytes, algorithm: str = "sha256") -> "ContentHash":
        """Hash ``data`` in memory."""

        normalized = _normalize_algorithm(algorithm)
        return cls(algorithm=normalized, value=hashlib.new(normalized, data).hexdigest())

    @classmethod
    def of_file(cls, path: Path, algorithm: str = "sha256") -> "ContentHash":
        """Hash the file at ``path`` in fixed-size chunks."""

        normalized = _normalize_algorithm(algorithm)
        h = hashlib.new(normalized)
        with Path(path).open("rb") as handle:
            for chunk in iter(lambda: handle.read(_FILE_CHUNK_SIZE), b""):
                h.update(chunk)
        return cls(algorithm=normalized, value=h.hexdigest())

    def hasher(self):
        """Return a fresh :mod:`hashlib` object for this hash's algorithm."""

        return hashlib.new(self.algorithm)

    def matches_file(self, path: Path) -> bool:
        """Return ``True`` when ``path`` exists and hashes to this value."""

        candidate = Path(path)
        try:
            if not candidate.is_file():
                return False
            return ContentHash.of_file(candidate, self.algorithm) == self
        except OSError as exc:
            LOGGER.debug(
                "unable to verify cached file",
                extra={"stage": "verify", "path": str(candidate), "error": str(exc)},
            )
            return False

    def to_mapping(self) -> Dict[str, str]:
        """Return mapping representation for manifests."""

        return {"algorithm": self.algorithm, "value": self.value}
