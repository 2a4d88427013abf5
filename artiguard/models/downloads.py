"""Download state machine models — one run per request, two terminal states."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from artiguard.models.artifacts import DigestAlgorithm


class DownloadState(str, Enum):
    """Lifecycle of a single download-and-verify request."""

    INIT = "init"
    FETCHING_ARTIFACT = "fetching_artifact"
    COMPUTING_DIGEST = "computing_digest"
    COMPARING = "comparing"
    INSTALLING = "installing"
    INSTALLED = "installed"
    FAILED = "failed"


# Valid state transitions, enforced by DownloadRun.
# Terminal states (INSTALLED, FAILED) have no outgoing transitions.
VALID_TRANSITIONS: dict[DownloadState, set[DownloadState]] = {
    DownloadState.INIT: {DownloadState.FETCHING_ARTIFACT, DownloadState.FAILED},
    DownloadState.FETCHING_ARTIFACT: {DownloadState.COMPUTING_DIGEST, DownloadState.FAILED},
    DownloadState.COMPUTING_DIGEST: {DownloadState.COMPARING, DownloadState.FAILED},
    DownloadState.COMPARING: {DownloadState.INSTALLING, DownloadState.FAILED},
    DownloadState.INSTALLING: {DownloadState.INSTALLED, DownloadState.FAILED},
    DownloadState.INSTALLED: set(),  # terminal
    DownloadState.FAILED: set(),  # terminal
}


class DownloadTransition(BaseModel):
    """Records a single state transition for the request's audit trail."""

    model_config = ConfigDict(frozen=True)

    from_state: DownloadState
    to_state: DownloadState
    reason: str | None = None  # populated when entering FAILED


class InstalledArtifact(BaseModel):
    """A verified artifact at its final destination."""

    model_config = ConfigDict(frozen=True)

    path: Path
    url: str
    digest: str
    algorithm: DigestAlgorithm
    size_bytes: int
    transitions: list[DownloadTransition] = []


class ExtractedArtifact(BaseModel):
    """A verified archive unpacked into a destination directory.

    ``digest`` is the digest of the archive, not of any extracted member.
    """

    model_config = ConfigDict(frozen=True)

    dest_dir: Path
    url: str
    digest: str
    algorithm: DigestAlgorithm
    size_bytes: int
    members: list[str] = []
    transitions: list[DownloadTransition] = []
