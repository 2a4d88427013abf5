"""Structural checksum validation.

A pure check of length and hex alphabet against the algorithm.  It proves
nothing cryptographically; it catches truncated fetches, scraped garbage and
injected content before any trust is extended to a checksum.
"""

from __future__ import annotations

import re

from artiguard.errors import InvalidChecksumFormat
from artiguard.models.artifacts import DIGEST_HEX_LENGTHS, DigestAlgorithm

_HEX_RE = re.compile(r"[0-9a-fA-F]+")

_ALGORITHM_BY_LENGTH: dict[int, DigestAlgorithm] = {
    length: algorithm for algorithm, length in DIGEST_HEX_LENGTHS.items()
}


def validate_checksum_format(
    digest: str,
    algorithm: DigestAlgorithm | str,
    *,
    artifact: str = "",
    source: str = "",
) -> None:
    """Raise ``InvalidChecksumFormat`` unless *digest* is well-formed.

    Accepts upper- and lower-case hex.  The empty string never validates.
    """
    try:
        algo = DigestAlgorithm(algorithm)
    except ValueError:
        raise InvalidChecksumFormat(
            f"unsupported algorithm {algorithm!r}; "
            f"expected one of {[a.value for a in DigestAlgorithm]}",
            artifact=artifact,
            source=source,
        ) from None

    if not isinstance(digest, str) or not digest:
        raise InvalidChecksumFormat(
            f"empty {algo.value} checksum", artifact=artifact, source=source
        )

    if len(digest) != algo.hex_length:
        raise InvalidChecksumFormat(
            f"{algo.value} checksum must be {algo.hex_length} hex characters, "
            f"got {len(digest)}",
            artifact=artifact,
            source=source,
        )

    if not _HEX_RE.fullmatch(digest):
        raise InvalidChecksumFormat(
            f"{algo.value} checksum contains non-hex characters",
            artifact=artifact,
            source=source,
        )


def is_valid_checksum(digest: str, algorithm: DigestAlgorithm | str) -> bool:
    """Boolean form of ``validate_checksum_format``."""
    try:
        validate_checksum_format(digest, algorithm)
    except InvalidChecksumFormat:
        return False
    return True


def detect_algorithm(digest: str) -> DigestAlgorithm | None:
    """Infer the algorithm of a hex digest from its length.

    Returns None for anything that is not pure hex of a known length.
    """
    if not digest or not _HEX_RE.fullmatch(digest):
        return None
    return _ALGORITHM_BY_LENGTH.get(len(digest))
