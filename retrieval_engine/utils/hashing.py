"""
Hashing utilities - pure functions used by duplicate detection.
"""

import hashlib
import re
import unicodedata
from pathlib import PurePosixPath
from typing import Protocol
from urllib.parse import urlparse

_WHITESPACE = re.compile(r"\s+")


class ByteSource(Protocol):
    """Raw bytes of an uploaded file plus a stable hash of them."""

    def read_bytes(self) -> bytes: ...

    def sha256(self) -> str: ...


class InMemoryByteSource:
    def __init__(self, data: bytes):
        self._data = data

    def read_bytes(self) -> bytes:
        return self._data

    def sha256(self) -> str:
        return sha256_bytes(self._data)


def sha256_bytes(data: bytes) -> str:
    sha256_hash = hashlib.sha256()
    for start in range(0, len(data), 4096):
        sha256_hash.update(data[start : start + 4096])
    return sha256_hash.hexdigest()


def normalize_text(text: str) -> str:
    """NFKC-normalize, casefold and collapse whitespace."""
    normalized = unicodedata.normalize("NFKC", text).casefold()
    return _WHITESPACE.sub(" ", normalized).strip()


def content_hash(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def location_basename(location: str) -> str:
    """
    Final path segment of a location, for local paths and URLs alike.

    >>> location_basename("https://example.com/docs/report.pdf?v=2")
    'report.pdf'
    """
    parsed = urlparse(location)
    path = parsed.path if parsed.scheme and parsed.netloc else location
    return PurePosixPath(path.replace("\\", "/")).name
