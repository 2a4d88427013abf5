"""Typed failure taxonomy for artifact retrieval.

Every failure reaches the caller as a subclass of ``ArtiguardError``.  Each
error names the artifact, the source that was attempted, and the exact
reason, so a build step can decide between retrying, updating a version pin,
or opening a compromise investigation.
"""

from __future__ import annotations


class ArtiguardError(Exception):
    """Base class for all retrieval failures.

    Parameters
    ----------
    reason:
        Human-readable description of what went wrong.
    artifact:
        Artifact name or filename the failure concerns.
    source:
        URL or table the failure was observed at.
    """

    code: str = "ARTIGUARD_ERROR"

    def __init__(self, reason: str, *, artifact: str = "", source: str = "") -> None:
        self.reason = reason
        self.artifact = artifact
        self.source = source
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [f"[{self.code}]"]
        if self.artifact:
            parts.append(f"artifact={self.artifact}")
        if self.source:
            parts.append(f"source={self.source}")
        return f"{' '.join(parts)}: {self.reason}"


class InvalidChecksumFormat(ArtiguardError):
    """A checksum string is not a well-formed hex digest for its algorithm."""

    code = "INVALID_CHECKSUM_FORMAT"


class VersionNotFound(ArtiguardError):
    """No concrete version in the upstream listing matches the specifier."""

    code = "VERSION_NOT_FOUND"


class VersionResolutionNetworkError(ArtiguardError):
    """The upstream version listing could not be fetched."""

    code = "VERSION_RESOLUTION_NETWORK_ERROR"


class ChecksumNotFoundInManifest(ArtiguardError):
    """The checksum source holds no entry for the requested artifact."""

    code = "CHECKSUM_NOT_FOUND"


class AlgorithmMismatch(ArtiguardError):
    """The source only offers a digest of a different algorithm."""

    code = "ALGORITHM_MISMATCH"


class UpstreamUnavailable(ArtiguardError):
    """An outbound request failed after its bounded retries."""

    code = "UPSTREAM_UNAVAILABLE"

    def __init__(
        self,
        reason: str,
        *,
        artifact: str = "",
        source: str = "",
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(reason, artifact=artifact, source=source)


class DownloadFailed(ArtiguardError):
    """The artifact itself could not be transferred."""

    code = "DOWNLOAD_FAILED"


class ChecksumMismatch(ArtiguardError):
    """The downloaded bytes do not hash to the expected digest.

    This signals possible tampering or a stale checksum source.  It is always
    fatal to the request and must fail the build step.
    """

    code = "CHECKSUM_MISMATCH"

    def __init__(
        self,
        *,
        expected: str,
        actual: str,
        algorithm: str,
        artifact: str = "",
        source: str = "",
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm
        super().__init__(
            f"{algorithm} mismatch: expected {expected}, got {actual}",
            artifact=artifact,
            source=source,
        )


class ArchiveExtractionError(ArtiguardError):
    """A verified archive could not be unpacked."""

    code = "ARCHIVE_EXTRACTION_FAILED"


class ReentrantDownloadError(ArtiguardError):
    """A download scope was opened while another is active in this process."""

    code = "REENTRANT_DOWNLOAD"


class InvalidTemplate(ArtiguardError):
    """A URL or filename template cannot be rendered."""

    code = "INVALID_TEMPLATE"
