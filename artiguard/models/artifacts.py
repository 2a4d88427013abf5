"""Artifact request, identity and checksum models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class DigestAlgorithm(str, Enum):
    """Hash algorithms accepted for artifact verification."""

    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def hex_length(self) -> int:
        """Number of hex characters in a digest of this algorithm."""
        return DIGEST_HEX_LENGTHS[self]


DIGEST_HEX_LENGTHS: dict[DigestAlgorithm, int] = {
    DigestAlgorithm.SHA1: 40,
    DigestAlgorithm.SHA256: 64,
    DigestAlgorithm.SHA512: 128,
}


class SourceKind(str, Enum):
    """Where a checksum is obtained from.  One adapter per member."""

    AGGREGATE_MANIFEST = "aggregate_manifest"
    SIDECAR = "sidecar"
    REGISTRY_SIDECAR = "registry_sidecar"
    VENDOR_PAGE = "vendor_page"
    PINNED = "pinned"


class Ecosystem(str, Enum):
    """Language ecosystems with a canonical upstream version listing."""

    PYTHON = "python"
    NODE = "node"
    RUST = "rust"
    JAVA = "java"
    RUBY = "ruby"
    GO = "go"


class ArtifactRequest(BaseModel):
    """What a caller asks for: an artifact at a possibly-partial version.

    Every template may reference ``{version}`` and ``{arch}``; only
    ``checksum_url_template`` may also reference ``{filename}``.
    When ``filename_template`` is empty the last path segment of the rendered
    URL is used.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    source_kind: SourceKind
    url_template: str
    checksum_url_template: str = ""
    filename_template: str = ""
    ecosystem: Ecosystem | None = None
    arch: str = "amd64"


class ResolvedVersion(BaseModel):
    """A concrete version produced from a specifier."""

    model_config = ConfigDict(frozen=True)

    specifier: str
    version: str
    resolved: bool = False  # True when an upstream listing was consulted


class ArtifactIdentity(BaseModel):
    """A concrete artifact as seen by the checksum adapters."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    filename: str
    url: str
    checksum_url: str = ""
    arch: str = "amd64"


class ChecksumProvenance(BaseModel):
    """Which adapter produced a checksum, and from where."""

    model_config = ConfigDict(frozen=True)

    source_kind: SourceKind
    location: str


class ChecksumRecord(BaseModel):
    """An expected digest for an artifact.

    Structural validity is enforced by the format validator, not by this
    model, so that malformed digests surface as ``InvalidChecksumFormat``.
    """

    model_config = ConfigDict(frozen=True)

    digest: str
    algorithm: DigestAlgorithm
    provenance: ChecksumProvenance | None = None

    @property
    def source(self) -> str:
        return self.provenance.location if self.provenance else ""
