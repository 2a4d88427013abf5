"""Checksum source adapters — one implementation per ``SourceKind``.

Each adapter turns an ``ArtifactIdentity`` into a ``ChecksumRecord`` or raises
a typed error.  Adapters never guess: a digest is returned only after it has
passed the format validator, and a source that only offers a different
algorithm than the one requested fails with ``AlgorithmMismatch`` instead of
substituting it.

Adapters in order of trust:

- ``PinnedChecksumSource``       — git-tracked, reviewed table (preferred)
- ``AggregateManifestSource``    — publisher's checksums.txt / SHASUMS256.txt
- ``SidecarSource``              — publisher's ``<file>.sha256`` companion
- ``RegistrySidecarSource``      — package registry companion (Maven-style)
- ``VendorPageSource``           — HTML scrape, last resort
"""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from artiguard.core.fetcher import HttpFetcher
from artiguard.core.format_validator import detect_algorithm, validate_checksum_format
from artiguard.errors import (
    AlgorithmMismatch,
    ChecksumNotFoundInManifest,
    InvalidChecksumFormat,
)
from artiguard.models.artifacts import (
    ArtifactIdentity,
    ChecksumProvenance,
    ChecksumRecord,
    DigestAlgorithm,
    SourceKind,
)

logger = logging.getLogger(__name__)

# Values the pinned table uses for "not filled in yet".
PINNED_PLACEHOLDERS = frozenset(("", "null", "placeholder_actual_checksum_needed"))

_TAG_RE = re.compile(r"<[^>]+>")


class ChecksumSource(Protocol):
    """The shared adapter contract."""

    kind: SourceKind

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        ...


def _build_record(
    digest: str,
    algorithm: DigestAlgorithm,
    *,
    kind: SourceKind,
    identity: ArtifactIdentity,
    location: str,
) -> ChecksumRecord:
    """Check algorithm strength and structure, then wrap as a record."""
    found = detect_algorithm(digest)
    if found is not None and found != algorithm:
        raise AlgorithmMismatch(
            f"requested {algorithm.value} but the source publishes {found.value}",
            artifact=identity.filename,
            source=location,
        )
    validate_checksum_format(digest, algorithm, artifact=identity.filename, source=location)
    return ChecksumRecord(
        digest=digest.lower(),
        algorithm=algorithm,
        provenance=ChecksumProvenance(source_kind=kind, location=location),
    )


def _sidecar_url(identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> str:
    return identity.checksum_url or f"{identity.url}.{algorithm.value}"


def strip_markup(text: str) -> str:
    """Drop HTML tags and unescape entities."""
    return html.unescape(_TAG_RE.sub("", text))


# ----------------------------------------------------------------------
# Aggregate manifest
# ----------------------------------------------------------------------


def parse_manifest(body: str) -> dict[str, str]:
    """Parse ``<digest>  <filename>`` lines (sha256sum format).

    Blank lines and ``#`` comments are skipped; a leading ``*`` binary-mode
    marker on the filename is dropped.  The first entry for a filename wins.
    """
    entries: dict[str, str] = {}
    for raw in body.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            continue
        digest, filename = parts[0], parts[1].strip().lstrip("*")
        entries.setdefault(filename, digest)
    return entries


class AggregateManifestSource:
    """One release-wide file listing checksums for many artifacts."""

    kind = SourceKind.AGGREGATE_MANIFEST

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        if not identity.checksum_url:
            raise ChecksumNotFoundInManifest(
                "no manifest URL configured", artifact=identity.filename
            )
        url = identity.checksum_url
        entries = parse_manifest(self._fetcher.get_text(url))

        digest = entries.get(identity.filename)
        if digest is None:
            # Some manifests list paths (./dist/tool.tar.gz); match on basename
            for listed, candidate in entries.items():
                if listed.rsplit("/", 1)[-1] == identity.filename:
                    digest = candidate
                    break
        if digest is None:
            raise ChecksumNotFoundInManifest(
                f"no entry for {identity.filename} among {len(entries)} manifest lines",
                artifact=identity.filename,
                source=url,
            )
        return _build_record(digest, algorithm, kind=self.kind, identity=identity, location=url)


# ----------------------------------------------------------------------
# Sidecar files
# ----------------------------------------------------------------------


class SidecarSource:
    """A one-line ``<digest>[  <filename>]`` file published next to the artifact."""

    kind = SourceKind.SIDECAR

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        url = _sidecar_url(identity, algorithm)
        tokens = self._fetcher.get_text(url).split()
        if not tokens:
            raise InvalidChecksumFormat(
                "sidecar file is empty", artifact=identity.filename, source=url
            )
        if len(tokens) > 1:
            named = tokens[1].lstrip("*").rsplit("/", 1)[-1]
            if named != identity.filename:
                raise ChecksumNotFoundInManifest(
                    f"sidecar describes {named}, not {identity.filename}",
                    artifact=identity.filename,
                    source=url,
                )
        return _build_record(tokens[0], algorithm, kind=self.kind, identity=identity, location=url)


class RegistrySidecarSource:
    """Registry-hosted companion file containing only the digest."""

    kind = SourceKind.REGISTRY_SIDECAR

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        url = _sidecar_url(identity, algorithm)
        tokens = self._fetcher.get_text(url).split()
        if len(tokens) != 1:
            raise InvalidChecksumFormat(
                f"registry sidecar must contain exactly one digest, found {len(tokens)} tokens",
                artifact=identity.filename,
                source=url,
            )
        return _build_record(tokens[0], algorithm, kind=self.kind, identity=identity, location=url)


# ----------------------------------------------------------------------
# Vendor pages
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class VendorPagePattern:
    """How to find one artifact's checksum on a vendor download page.

    ``anchor`` is a format string rendered with the identity's fields; the
    digest is searched for in the ``window`` lines starting at the first line
    containing the anchor, using ``digest_pattern`` on the raw window and
    then on its markup-stripped text.
    """

    page_url: str
    anchor: str
    digest_pattern: str
    algorithms: frozenset[DigestAlgorithm]
    window: int = 6


VENDOR_PATTERNS: dict[str, VendorPagePattern] = {
    # go.dev/dl lists each file in a table row followed by <tt>sha256</tt>
    "go": VendorPagePattern(
        page_url="https://go.dev/dl/",
        anchor="{filename}",
        digest_pattern=r"<tt>\s*([0-9a-fA-F]{64})\s*</tt>",
        algorithms=frozenset({DigestAlgorithm.SHA256}),
    ),
    # ruby-lang.org lists ">Ruby X.Y.Z" followed by "sha256: <digest>"
    "ruby": VendorPagePattern(
        page_url="https://www.ruby-lang.org/en/downloads/",
        anchor=">Ruby {version}<",
        digest_pattern=r"sha256:\s*([0-9a-fA-F]{64})",
        algorithms=frozenset({DigestAlgorithm.SHA256}),
        window=3,
    ),
}


class VendorPageSource:
    """Scrapes a checksum out of an unstructured vendor HTML page.

    Brittle by nature: any page redesign breaks it.  Use only when no
    pinned, manifest or sidecar source exists.
    """

    kind = SourceKind.VENDOR_PAGE

    def __init__(
        self,
        fetcher: HttpFetcher,
        patterns: dict[str, VendorPagePattern] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._patterns = patterns if patterns is not None else dict(VENDOR_PATTERNS)

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        pattern = self._patterns.get(identity.name)
        if pattern is None:
            raise ChecksumNotFoundInManifest(
                f"no vendor page pattern for {identity.name!r}; "
                f"known: {sorted(self._patterns)}",
                artifact=identity.filename,
            )
        url = identity.checksum_url or pattern.page_url
        if algorithm not in pattern.algorithms:
            raise AlgorithmMismatch(
                f"requested {algorithm.value} but the page only publishes "
                f"{sorted(a.value for a in pattern.algorithms)}",
                artifact=identity.filename,
                source=url,
            )

        logger.warning(
            "Scraping %s checksum from vendor page %s; prefer a pinned checksum",
            identity.filename, url,
        )
        page = self._fetcher.get_text(url)
        digest = self._extract(page, pattern, identity)
        if digest is None:
            raise ChecksumNotFoundInManifest(
                f"no checksum next to {pattern.anchor.format(**identity.model_dump())!r} on page",
                artifact=identity.filename,
                source=url,
            )
        return _build_record(digest, algorithm, kind=self.kind, identity=identity, location=url)

    @staticmethod
    def _extract(page: str, pattern: VendorPagePattern, identity: ArtifactIdentity) -> str | None:
        anchor = pattern.anchor.format(**identity.model_dump())
        lines = page.splitlines()
        digest_re = re.compile(pattern.digest_pattern)
        for i, line in enumerate(lines):
            if anchor not in line:
                continue
            window = "\n".join(lines[i:i + pattern.window])
            match = digest_re.search(window)
            if match:
                return match.group(1).strip()
            # Some pages wrap the digest in extra markup; retry on plain text
            match = digest_re.search(strip_markup(window))
            if match:
                return match.group(1).strip()
        return None


# ----------------------------------------------------------------------
# Pinned table
# ----------------------------------------------------------------------


class PinnedChecksumSource:
    """Reviewed checksums from a git-tracked JSON table.

    Layout::

        {"languages": {"python": {"versions": {"3.12.7": {"sha256": "..."}}}},
         "tools":     {"gh":     {"versions": {"2.60.1": {"sha256": "..."}}}}}

    Per-architecture entries (``{"sha256": {"amd64": "...", "arm64": "..."}}``)
    are also accepted.
    """

    kind = SourceKind.PINNED

    def __init__(self, table_path: Path | None = None, table: dict | None = None) -> None:
        self._path = table_path
        self._table = table

    def _load(self) -> dict:
        if self._table is None:
            if self._path is None or not self._path.exists():
                self._table = {}
            else:
                try:
                    self._table = json.loads(self._path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    raise InvalidChecksumFormat(
                        f"unreadable pinned table: {e}", source=str(self._path)
                    ) from e
        return self._table

    def _lookup(self, identity: ArtifactIdentity, location: str) -> dict | None:
        table = self._load()
        if not isinstance(table, dict):
            raise InvalidChecksumFormat(
                "pinned table is not a JSON object", artifact=identity.filename, source=location
            )
        for section in ("languages", "tools"):
            path = [section, identity.name, "versions"]
            node: object = table
            for depth, key in enumerate(path):
                if not isinstance(node, dict):
                    raise InvalidChecksumFormat(
                        f"malformed pinned table at {'.'.join(path[:depth])}",
                        artifact=identity.filename,
                        source=location,
                    )
                node = node.get(key)
                if node is None:
                    break
            if node is None:
                continue
            if not isinstance(node, dict):
                raise InvalidChecksumFormat(
                    f"malformed pinned table at {'.'.join(path)}",
                    artifact=identity.filename,
                    source=location,
                )
            if identity.version in node:
                entry = node[identity.version]
                if not isinstance(entry, dict):
                    raise InvalidChecksumFormat(
                        f"malformed pinned entry for {identity.name} {identity.version}",
                        artifact=identity.filename,
                        source=location,
                    )
                return entry
        return None

    def fetch(self, identity: ArtifactIdentity, algorithm: DigestAlgorithm) -> ChecksumRecord:
        location = str(self._path) if self._path else "<pinned table>"
        entry = self._lookup(identity, location)

        if not entry:
            raise ChecksumNotFoundInManifest(
                f"{identity.name} {identity.version} is not pinned",
                artifact=identity.filename,
                source=location,
            )

        digest = self._pick(entry.get(algorithm.value), identity)
        if digest is None:
            available = sorted(
                a.value for a in DigestAlgorithm
                if self._pick(entry.get(a.value), identity) is not None
            )
            if available:
                raise AlgorithmMismatch(
                    f"requested {algorithm.value} but only {available} is pinned",
                    artifact=identity.filename,
                    source=location,
                )
            raise ChecksumNotFoundInManifest(
                f"{identity.name} {identity.version} has only a placeholder checksum",
                artifact=identity.filename,
                source=location,
            )
        return _build_record(digest, algorithm, kind=self.kind, identity=identity, location=location)

    @staticmethod
    def _pick(value: object, identity: ArtifactIdentity) -> str | None:
        if isinstance(value, dict):
            value = value.get(identity.arch)
        if not isinstance(value, str) or value in PINNED_PLACEHOLDERS:
            return None
        return value


# ----------------------------------------------------------------------
# Dispatch
# ----------------------------------------------------------------------


def build_sources(fetcher: HttpFetcher) -> dict[SourceKind, ChecksumSource]:
    """Instantiate one adapter per source kind."""
    sources: dict[SourceKind, ChecksumSource] = {
        SourceKind.AGGREGATE_MANIFEST: AggregateManifestSource(fetcher),
        SourceKind.SIDECAR: SidecarSource(fetcher),
        SourceKind.REGISTRY_SIDECAR: RegistrySidecarSource(fetcher),
        SourceKind.VENDOR_PAGE: VendorPageSource(fetcher),
        SourceKind.PINNED: PinnedChecksumSource(fetcher.config.pinned_checksums_path),
    }
    missing = set(SourceKind) - set(sources)
    if missing:
        raise RuntimeError(f"No checksum adapter for: {sorted(k.value for k in missing)}")
    return sources


class ChecksumFetcher:
    """Selects the adapter for a source kind and runs it."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        sources: dict[SourceKind, ChecksumSource] | None = None,
    ) -> None:
        self._sources = build_sources(fetcher)
        if sources:
            self._sources.update(sources)

    def fetch(
        self,
        source_kind: SourceKind | str,
        identity: ArtifactIdentity,
        algorithm: DigestAlgorithm | str,
    ) -> ChecksumRecord:
        kind = SourceKind(source_kind)
        algo = DigestAlgorithm(algorithm)
        record = self._sources[kind].fetch(identity, algo)
        logger.info(
            "Obtained %s for %s from %s (%s)",
            algo.value, identity.filename, record.source, kind.value,
        )
        return record

    def fetch_first(
        self,
        source_kinds: list[SourceKind],
        identity: ArtifactIdentity,
        algorithm: DigestAlgorithm | str,
    ) -> ChecksumRecord:
        """Try each source kind in order of authority.

        Only ``ChecksumNotFoundInManifest`` moves on to the next source; any
        other failure (a malformed digest, a weaker algorithm) stops the lookup.
        """
        if not source_kinds:
            raise ValueError("at least one checksum source kind is required")
        misses: list[str] = []
        for kind in source_kinds:
            try:
                return self.fetch(kind, identity, algorithm)
            except ChecksumNotFoundInManifest as e:
                logger.info("No %s checksum for %s: %s", SourceKind(kind).value, identity.filename, e.reason)
                misses.append(f"{SourceKind(kind).value}: {e.reason}")
        raise ChecksumNotFoundInManifest(
            f"no source has a checksum ({'; '.join(misses)})",
            artifact=identity.filename,
        )
