"""Digest helpers for artifact verification.

Artifacts can be hundreds of megabytes, so files are hashed in fixed-size
chunks rather than read into memory.
"""

from __future__ import annotations

import hashlib
import hmac
from pathlib import Path

from artiguard.models.artifacts import DigestAlgorithm

DEFAULT_CHUNK_SIZE = 64 * 1024


def new_hash(algorithm: DigestAlgorithm) -> "hashlib._Hash":
    """Return a fresh hashlib object for the given algorithm."""
    return hashlib.new(DigestAlgorithm(algorithm).value)


def digest_bytes(data: bytes, algorithm: DigestAlgorithm) -> str:
    """Return the lowercase hex digest of raw bytes."""
    h = new_hash(algorithm)
    h.update(data)
    return h.hexdigest()


def digest_file(
    path: Path,
    algorithm: DigestAlgorithm,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """Return the lowercase hex digest of a file's contents."""
    h = new_hash(algorithm)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def digests_equal(expected: str, actual: str) -> bool:
    """Case-insensitive, constant-time comparison of two hex digests."""
    return hmac.compare_digest(expected.strip().lower(), actual.strip().lower())
