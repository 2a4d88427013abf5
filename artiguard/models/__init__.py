"""Artiguard data models — all Pydantic v2, all frozen (immutable)."""

from artiguard.models.artifacts import (
    DIGEST_HEX_LENGTHS,
    ArtifactIdentity,
    ArtifactRequest,
    ChecksumProvenance,
    ChecksumRecord,
    DigestAlgorithm,
    Ecosystem,
    ResolvedVersion,
    SourceKind,
)
from artiguard.models.downloads import (
    VALID_TRANSITIONS,
    DownloadState,
    DownloadTransition,
    ExtractedArtifact,
    InstalledArtifact,
)

__all__ = [
    # artifacts
    "DigestAlgorithm",
    "DIGEST_HEX_LENGTHS",
    "SourceKind",
    "Ecosystem",
    "ArtifactRequest",
    "ArtifactIdentity",
    "ResolvedVersion",
    "ChecksumProvenance",
    "ChecksumRecord",
    # downloads
    "DownloadState",
    "DownloadTransition",
    "VALID_TRANSITIONS",
    "InstalledArtifact",
    "ExtractedArtifact",
]
