"""Entry points for build scripts.

Each function takes an explicit ``FetchConfig``.  An ``HttpFetcher`` may be
injected to share one connection pool across calls (and, in tests, to supply
a mock transport); otherwise a fetcher is created for the call and closed
when it returns.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

from artiguard.config import FetchConfig
from artiguard.core import format_validator
from artiguard.core.checksum_sources import ChecksumFetcher
from artiguard.core.fetcher import HttpFetcher
from artiguard.core.orchestrator import DownloadVerifier, artifact_name, verify_file
from artiguard.core.version_resolver import VersionResolver, is_partial_version
from artiguard.errors import InvalidTemplate, VersionNotFound
from artiguard.models.artifacts import (
    ArtifactIdentity,
    ArtifactRequest,
    ChecksumRecord,
    DigestAlgorithm,
    Ecosystem,
    SourceKind,
)
from artiguard.models.downloads import ExtractedArtifact, InstalledArtifact

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _fetcher_for(config: FetchConfig, fetcher: HttpFetcher | None) -> Iterator[HttpFetcher]:
    if fetcher is not None:
        yield fetcher
        return
    with HttpFetcher(config) as owned:
        yield owned


def resolve_version(
    ecosystem: Ecosystem | str,
    specifier: str,
    *,
    config: FetchConfig,
    fetcher: HttpFetcher | None = None,
) -> str:
    """Return the concrete version for a possibly-partial *specifier*."""
    with _fetcher_for(config, fetcher) as f:
        return VersionResolver(f).resolve(ecosystem, specifier).version


def fetch_checksum(
    source_kind: SourceKind | str,
    identity: ArtifactIdentity,
    algorithm: DigestAlgorithm | str,
    *,
    config: FetchConfig,
    fetcher: HttpFetcher | None = None,
) -> ChecksumRecord:
    """Obtain a validated checksum for *identity* from one source kind."""
    with _fetcher_for(config, fetcher) as f:
        return ChecksumFetcher(f).fetch(source_kind, identity, algorithm)


def validate_checksum_format(digest: str, algorithm: DigestAlgorithm | str) -> None:
    """Raise ``InvalidChecksumFormat`` unless *digest* is well-formed."""
    format_validator.validate_checksum_format(digest, algorithm)


def verify_checksum(
    path: Path,
    record: ChecksumRecord,
    *,
    config: FetchConfig | None = None,
) -> str:
    """Check a file already on disk against *record* and return its digest.

    Raises ``ChecksumMismatch`` when the contents differ and
    ``DownloadFailed`` when the file cannot be read.
    """
    if config is None:
        return verify_file(Path(path), record)
    return verify_file(Path(path), record, chunk_size=config.chunk_size)


def download_and_verify(
    url: str,
    dest_path: Path,
    record: ChecksumRecord,
    *,
    config: FetchConfig,
    fetcher: HttpFetcher | None = None,
) -> InstalledArtifact:
    """Download *url* and install it at *dest_path* only if it matches *record*."""
    with _fetcher_for(config, fetcher) as f:
        return DownloadVerifier(config, f).download_and_verify(url, Path(dest_path), record)


def download_and_extract(
    url: str,
    dest_dir: Path,
    record: ChecksumRecord,
    *,
    config: FetchConfig,
    members: list[str] | None = None,
    fetcher: HttpFetcher | None = None,
) -> ExtractedArtifact:
    """Verify the archive at *url*, then unpack it into *dest_dir*."""
    with _fetcher_for(config, fetcher) as f:
        return DownloadVerifier(config, f).download_and_extract(
            url, Path(dest_dir), record, members
        )


# ----------------------------------------------------------------------
# Whole-request flow
# ----------------------------------------------------------------------


def _render(template: str, label: str, artifact: str, **fields: str) -> str:
    try:
        return template.format(**fields)
    except (KeyError, IndexError, AttributeError, ValueError) as e:
        raise InvalidTemplate(
            f"cannot render {label} {template!r}: {type(e).__name__}: {e}; "
            f"available placeholders are {sorted('{' + k + '}' for k in fields)}",
            artifact=artifact,
        ) from e


def identify(request: ArtifactRequest, version: str) -> ArtifactIdentity:
    """Render a request's templates for a concrete *version*.

    Raises ``InvalidTemplate`` for an unknown placeholder or a stray brace.
    """
    fields = {"version": version, "arch": request.arch}
    url = _render(request.url_template, "url template", request.name, **fields)
    if request.filename_template:
        filename = _render(request.filename_template, "filename template", request.name, **fields)
    else:
        filename = artifact_name(url)
    checksum_url = ""
    if request.checksum_url_template:
        checksum_url = _render(
            request.checksum_url_template, "checksum url template", request.name,
            filename=filename, **fields,
        )
    return ArtifactIdentity(
        name=request.name,
        version=version,
        filename=filename,
        url=url,
        checksum_url=checksum_url,
        arch=request.arch,
    )


def checksum_sources_for(request: ArtifactRequest) -> list[SourceKind]:
    """Source kinds to consult for *request*, most authoritative first.

    The reviewed pinned table always comes first; the source the request
    names is the fallback for versions nobody has pinned yet.
    """
    kinds = [SourceKind.PINNED]
    if request.source_kind not in kinds:
        kinds.append(request.source_kind)
    return kinds


def retrieve(
    request: ArtifactRequest,
    dest_path: Path,
    *,
    config: FetchConfig,
    fetcher: HttpFetcher | None = None,
) -> InstalledArtifact:
    """Resolve, obtain a checksum, then download and verify one artifact.

    A partial version is only accepted when the request names an
    ecosystem to resolve it against.  The checksum comes from the pinned
    table when it has an entry, otherwise from the request's own source;
    the record's provenance says which one answered.
    """
    with _fetcher_for(config, fetcher) as f:
        if request.ecosystem is not None:
            version = VersionResolver(f).resolve(request.ecosystem, request.version).version
        elif is_partial_version(request.version):
            raise VersionNotFound(
                f"partial version {request.version!r} needs an ecosystem to resolve against",
                artifact=request.name,
            )
        else:
            version = request.version

        identity = identify(request, version)
        record = ChecksumFetcher(f).fetch_first(
            checksum_sources_for(request), identity, request.algorithm
        )
        logger.debug(
            "Retrieving %s %s from %s (checksum from %s)",
            request.name, version, identity.url, record.provenance.source_kind.value,
        )
        return DownloadVerifier(config, f).download_and_verify(
            identity.url, Path(dest_path), record
        )
