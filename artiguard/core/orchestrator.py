"""Download-and-verify orchestrator.

One ``DownloadRun`` per request walks the state machine

    INIT -> FETCHING_ARTIFACT -> COMPUTING_DIGEST -> COMPARING
         -> INSTALLING -> INSTALLED

with every non-terminal state allowed to drop to FAILED.  Nothing reaches
the destination unless its digest matched; the artifact lives in a
registered TempDownload until then, and any failure removes it.
"""

from __future__ import annotations

import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from artiguard.config import FetchConfig
from artiguard.core.fetcher import HttpFetcher
from artiguard.core.format_validator import validate_checksum_format
from artiguard.core.hasher import DEFAULT_CHUNK_SIZE, digest_file, digests_equal
from artiguard.core.scratch import DownloadScope, ScratchDirectory, TempDownload
from artiguard.errors import (
    ArchiveExtractionError,
    ChecksumMismatch,
    DownloadFailed,
    UpstreamUnavailable,
)
from artiguard.models.artifacts import ChecksumRecord
from artiguard.models.downloads import (
    VALID_TRANSITIONS,
    DownloadState,
    DownloadTransition,
    ExtractedArtifact,
    InstalledArtifact,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


def artifact_name(url: str) -> str:
    """The file name a URL points at, e.g. ``node-v20.11.1-linux-x64.tar.xz``."""
    return unquote(PurePosixPath(urlparse(url).path).name) or "artifact"


class DownloadRun:
    """State of a single download request.

    Parameters
    ----------
    url:
        The artifact URL, used in log lines.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._state = DownloadState.INIT
        self._transitions: list[DownloadTransition] = []

    @property
    def state(self) -> DownloadState:
        return self._state

    @property
    def transitions(self) -> list[DownloadTransition]:
        return list(self._transitions)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def advance(self, target: DownloadState, reason: str | None = None) -> None:
        """Move to *target*, or raise ``InvalidTransitionError``."""
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition download of {self.url} from {self._state.value} "
                f"to {target.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        self._transitions.append(
            DownloadTransition(from_state=self._state, to_state=target, reason=reason)
        )
        logger.debug("%s: %s -> %s", self.url, self._state.value, target.value)
        self._state = target

    def fail(self, reason: str) -> None:
        """Enter FAILED from whatever non-terminal state the run is in."""
        if not self.is_terminal:
            self.advance(DownloadState.FAILED, reason=reason)


class DownloadVerifier:
    """Fetches an artifact, proves its digest, then installs it.

    Parameters
    ----------
    config:
        Retrieval configuration; supplies the scratch directory and chunk size.
    fetcher:
        Network chokepoint.  Created from *config* when omitted.
    scratch:
        Scratch space for in-flight files.  Defaults to ``config.scratch_dir``.
    """

    def __init__(
        self,
        config: FetchConfig,
        fetcher: HttpFetcher | None = None,
        scratch: ScratchDirectory | None = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher or HttpFetcher(config)
        self._scratch = scratch or ScratchDirectory(config.scratch_dir)

    @property
    def scratch(self) -> ScratchDirectory:
        return self._scratch

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def download_and_verify(
        self, url: str, dest: Path, record: ChecksumRecord
    ) -> InstalledArtifact:
        """Download *url* to *dest*, installing it only if *record* matches.

        Raises ``InvalidChecksumFormat`` before any network call when the
        record is malformed, ``DownloadFailed`` when the transfer fails and
        ``ChecksumMismatch`` when the bytes do not match.
        """
        dest = Path(dest)
        run = DownloadRun(url)
        name = artifact_name(url)
        try:
            validate_checksum_format(
                record.digest, record.algorithm, artifact=name, source=record.source
            )
            with DownloadScope(), self._scratch.allocate(name) as temp:
                digest, size = self._fetch_and_compare(run, url, record, temp, name)
                run.advance(DownloadState.INSTALLING)
                try:
                    temp.promote(dest)
                except OSError as e:
                    raise DownloadFailed(
                        f"cannot install to {dest}: {e}", artifact=name, source=url
                    ) from e
                run.advance(DownloadState.INSTALLED)
        except BaseException as e:
            run.fail(str(e) or type(e).__name__)
            raise

        logger.info("Installed %s (%s %s) at %s", name, record.algorithm.value, digest, dest)
        return InstalledArtifact(
            path=dest,
            url=url,
            digest=digest,
            algorithm=record.algorithm,
            size_bytes=size,
            transitions=run.transitions,
        )

    def download_and_extract(
        self,
        url: str,
        dest_dir: Path,
        record: ChecksumRecord,
        members: list[str] | None = None,
    ) -> ExtractedArtifact:
        """Verify an archive, then unpack it into *dest_dir*.

        The digest is checked against the archive as downloaded.  The archive
        itself never leaves scratch space.  When *members* is given only
        those entries are extracted, and every one of them must exist.
        """
        dest_dir = Path(dest_dir)
        run = DownloadRun(url)
        name = artifact_name(url)
        try:
            validate_checksum_format(
                record.digest, record.algorithm, artifact=name, source=record.source
            )
            with DownloadScope(), self._scratch.allocate(name) as temp:
                digest, size = self._fetch_and_compare(run, url, record, temp, name)
                run.advance(DownloadState.INSTALLING)
                extracted = extract_archive(temp.path, dest_dir, members, artifact=name)
                run.advance(DownloadState.INSTALLED)
        except BaseException as e:
            run.fail(str(e) or type(e).__name__)
            raise

        logger.info("Extracted %d member(s) of %s into %s", len(extracted), name, dest_dir)
        return ExtractedArtifact(
            dest_dir=dest_dir,
            url=url,
            digest=digest,
            algorithm=record.algorithm,
            size_bytes=size,
            members=extracted,
            transitions=run.transitions,
        )

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _fetch_and_compare(
        self,
        run: DownloadRun,
        url: str,
        record: ChecksumRecord,
        temp: TempDownload,
        name: str,
    ) -> tuple[str, int]:
        run.advance(DownloadState.FETCHING_ARTIFACT)
        try:
            with open(temp.path, "xb") as handle:
                size = self._fetcher.download(url, handle)
        except UpstreamUnavailable as e:
            logger.error("Download of %s failed: %s", name, e.reason)
            raise DownloadFailed(e.reason, artifact=name, source=url) from e
        except OSError as e:
            raise DownloadFailed(
                f"cannot write {temp.path}: {e}", artifact=name, source=url
            ) from e

        run.advance(DownloadState.COMPUTING_DIGEST)
        actual = digest_file(temp.path, record.algorithm, chunk_size=self._config.chunk_size)

        run.advance(DownloadState.COMPARING)
        if not digests_equal(record.digest, actual):
            logger.error(
                "Checksum mismatch for %s: expected %s, got %s",
                name, record.digest.lower(), actual,
            )
            raise ChecksumMismatch(
                expected=record.digest.lower(),
                actual=actual,
                algorithm=record.algorithm.value,
                artifact=name,
                source=record.source or url,
            )
        return actual, size


def verify_file(path: Path, record: ChecksumRecord, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Check a file already on disk against *record*; return its digest.

    Raises ``InvalidChecksumFormat`` for a malformed record,
    ``DownloadFailed`` when the file cannot be read and ``ChecksumMismatch``
    when its contents do not match.
    """
    path = Path(path)
    validate_checksum_format(
        record.digest, record.algorithm, artifact=path.name, source=record.source
    )
    try:
        actual = digest_file(path, record.algorithm, chunk_size=chunk_size)
    except OSError as e:
        raise DownloadFailed(f"cannot read {path}: {e}", artifact=path.name) from e

    if not digests_equal(record.digest, actual):
        logger.error(
            "Checksum mismatch for %s: expected %s, got %s",
            path, record.digest.lower(), actual,
        )
        raise ChecksumMismatch(
            expected=record.digest.lower(),
            actual=actual,
            algorithm=record.algorithm.value,
            artifact=path.name,
            source=record.source or str(path),
        )
    logger.info("Verified %s (%s %s)", path, record.algorithm.value, actual)
    return actual


# ----------------------------------------------------------------------
# Archive extraction
# ----------------------------------------------------------------------


def _normalize_member(name: str) -> str:
    return name.removeprefix("./").rstrip("/")


def _covers(wanted: set[str] | None, name: str) -> bool:
    """A wanted directory covers every member beneath it."""
    if wanted is None:
        return True
    name = _normalize_member(name)
    return any(name == w or name.startswith(w + "/") for w in wanted)


def _select(names: list[str], members: list[str] | None, artifact: str) -> set[str] | None:
    if members is None:
        return None
    wanted = {_normalize_member(m) for m in members}
    missing = [w for w in sorted(wanted) if not any(_covers({w}, n) for n in names)]
    if missing:
        raise ArchiveExtractionError(
            f"archive has no member(s) {missing}", artifact=artifact
        )
    return wanted


def _is_within(root: Path, name: str) -> bool:
    target = (root / name).resolve()
    return target == root or root in target.parents


def _extract_tar(archive: Path, dest_dir: Path, members: list[str] | None, artifact: str) -> list[str]:
    with tarfile.open(archive, "r:*") as tar:
        infos = tar.getmembers()
        wanted = _select([m.name for m in infos], members, artifact)
        selected = [
            m for m in infos
            if _covers(wanted, m.name)
        ]
        # Check every member before writing any of them
        for member in selected:
            try:
                tarfile.data_filter(member, str(dest_dir))
            except tarfile.FilterError as e:
                raise ArchiveExtractionError(
                    f"refusing unsafe member {member.name!r}: {e}", artifact=artifact
                ) from e
        tar.extractall(dest_dir, members=selected, filter="data")
    return [m.name for m in selected]


def _extract_zip(archive: Path, dest_dir: Path, members: list[str] | None, artifact: str) -> list[str]:
    root = dest_dir.resolve()
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
        wanted = _select(names, members, artifact)
        selected = [
            n for n in names
            if _covers(wanted, n)
        ]
        for name in selected:
            if name.startswith("/") or not _is_within(root, name):
                raise ArchiveExtractionError(
                    f"refusing member {name!r} outside the destination", artifact=artifact
                )
        zf.extractall(dest_dir, members=selected)
    return selected


def extract_archive(
    archive: Path,
    dest_dir: Path,
    members: list[str] | None = None,
    *,
    artifact: str = "",
) -> list[str]:
    """Unpack a tar (any compression) or zip archive into *dest_dir*.

    The format is sniffed from content.  Members that would land outside
    *dest_dir* are refused before anything is written.  Returns the names
    of the extracted members.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            return _extract_zip(archive, dest_dir, members, artifact)
        if tarfile.is_tarfile(archive):
            return _extract_tar(archive, dest_dir, members, artifact)
    except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
        raise ArchiveExtractionError(f"cannot extract: {e}", artifact=artifact) from e
    raise ArchiveExtractionError(
        "unsupported archive format; expected tar, tar.gz, tar.xz, tar.bz2 or zip",
        artifact=artifact,
    )
