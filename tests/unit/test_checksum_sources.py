"""Tests for the checksum source adapters and their dispatch."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from artiguard.core.checksum_sources import (
    AggregateManifestSource,
    ChecksumFetcher,
    PinnedChecksumSource,
    RegistrySidecarSource,
    SidecarSource,
    VendorPageSource,
    build_sources,
    parse_manifest,
)
from artiguard.core.fetcher import HttpFetcher
from artiguard.errors import (
    AlgorithmMismatch,
    ChecksumNotFoundInManifest,
    InvalidChecksumFormat,
    UpstreamUnavailable,
)
from artiguard.models.artifacts import ArtifactIdentity, DigestAlgorithm, SourceKind

DIGEST_A = "a" * 63 + "1"
DIGEST_B = "b" * 63 + "2"
SHA1 = "c" * 40
SHA512 = "d" * 128

RELEASE = "https://github.com/cli/cli/releases/download/v2.60.1"


def _identity(filename: str = "artifact-linux-amd64.tar.gz", **kwargs) -> ArtifactIdentity:
    fields = {
        "name": "artifact",
        "version": "2.60.1",
        "filename": filename,
        "url": f"{RELEASE}/{filename}",
        "checksum_url": f"{RELEASE}/checksums.txt",
    }
    fields.update(kwargs)
    return ArtifactIdentity(**fields)


# ---------------------------------------------------------------------------
# Aggregate manifest
# ---------------------------------------------------------------------------


class TestParseManifest:
    def test_skips_comments_and_blank_lines(self):
        body = f"# generated\n\n{DIGEST_A}  one.tar.gz\n{DIGEST_B} *two.zip\n"
        assert parse_manifest(body) == {"one.tar.gz": DIGEST_A, "two.zip": DIGEST_B}

    def test_first_entry_wins(self):
        body = f"{DIGEST_A}  dup.tar.gz\n{DIGEST_B}  dup.tar.gz\n"
        assert parse_manifest(body)["dup.tar.gz"] == DIGEST_A


class TestAggregateManifestSource:
    def test_returns_exactly_the_matching_line(self, fetcher: HttpFetcher, upstream):
        upstream.add(
            f"{RELEASE}/checksums.txt",
            f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n{DIGEST_B}  artifact-linux-arm64.tar.gz\n",
        )
        record = AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)
        assert record.digest == DIGEST_A
        assert record.provenance.source_kind == SourceKind.AGGREGATE_MANIFEST
        assert record.source == f"{RELEASE}/checksums.txt"

    def test_no_substring_match(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{DIGEST_B}  artifact-linux-amd64.tar.gz.sig\n")
        with pytest.raises(ChecksumNotFoundInManifest):
            AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)

    def test_matches_on_basename(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{DIGEST_A}  ./dist/artifact-linux-amd64.tar.gz\n")
        record = AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)
        assert record.digest == DIGEST_A

    def test_missing_entry(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{DIGEST_B}  artifact-linux-arm64.tar.gz\n")
        with pytest.raises(ChecksumNotFoundInManifest) as exc_info:
            AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)
        assert exc_info.value.artifact == "artifact-linux-amd64.tar.gz"

    def test_uppercase_digest_is_normalized(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{DIGEST_A.upper()}  artifact-linux-amd64.tar.gz\n")
        record = AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)
        assert record.digest == DIGEST_A

    def test_sha1_manifest_refused_for_sha256(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{SHA1}  artifact-linux-amd64.tar.gz\n")
        with pytest.raises(AlgorithmMismatch):
            AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)

    def test_garbage_entry_is_invalid(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", "<html>  artifact-linux-amd64.tar.gz\n")
        with pytest.raises(InvalidChecksumFormat):
            AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)

    def test_requires_manifest_url(self, fetcher: HttpFetcher, upstream):
        with pytest.raises(ChecksumNotFoundInManifest, match="no manifest URL"):
            AggregateManifestSource(fetcher).fetch(_identity(checksum_url=""), DigestAlgorithm.SHA256)
        assert upstream.calls == []

    def test_unreachable_manifest(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", "gone", status=404)
        with pytest.raises(UpstreamUnavailable):
            AggregateManifestSource(fetcher).fetch(_identity(), DigestAlgorithm.SHA256)


# ---------------------------------------------------------------------------
# Sidecars
# ---------------------------------------------------------------------------


class TestSidecarSource:
    def test_default_url_is_artifact_plus_algorithm(self, fetcher: HttpFetcher, upstream):
        identity = _identity(checksum_url="")
        upstream.add(f"{identity.url}.sha256", f"{DIGEST_A}\n")
        record = SidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA256)
        assert record.digest == DIGEST_A
        assert record.source == f"{identity.url}.sha256"

    def test_digest_plus_filename(self, fetcher: HttpFetcher, upstream):
        identity = _identity(checksum_url="")
        upstream.add(f"{identity.url}.sha256", f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n")
        assert SidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA256).digest == DIGEST_A

    def test_sidecar_for_other_file_refused(self, fetcher: HttpFetcher, upstream):
        identity = _identity(checksum_url="")
        upstream.add(f"{identity.url}.sha256", f"{DIGEST_A}  something-else.tar.gz\n")
        with pytest.raises(ChecksumNotFoundInManifest, match="something-else"):
            SidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA256)

    def test_empty_sidecar(self, fetcher: HttpFetcher, upstream):
        identity = _identity(checksum_url="")
        upstream.add(f"{identity.url}.sha256", "\n")
        with pytest.raises(InvalidChecksumFormat, match="empty"):
            SidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA256)

    def test_sha512_sidecar(self, fetcher: HttpFetcher, upstream):
        identity = _identity(checksum_url="")
        upstream.add(f"{identity.url}.sha512", SHA512)
        record = SidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA512)
        assert record.algorithm == DigestAlgorithm.SHA512


class TestRegistrySidecarSource:
    URL = "https://repo1.maven.org/maven2/org/example/lib/1.0/lib-1.0.jar"

    def test_digest_only(self, fetcher: HttpFetcher, upstream):
        identity = _identity(filename="lib-1.0.jar", url=self.URL, checksum_url="")
        upstream.add(f"{self.URL}.sha1", SHA1)
        record = RegistrySidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA1)
        assert record.digest == SHA1
        assert record.provenance.source_kind == SourceKind.REGISTRY_SIDECAR

    def test_extra_tokens_refused(self, fetcher: HttpFetcher, upstream):
        identity = _identity(filename="lib-1.0.jar", url=self.URL, checksum_url="")
        upstream.add(f"{self.URL}.sha256", f"{DIGEST_A}  lib-1.0.jar")
        with pytest.raises(InvalidChecksumFormat, match="exactly one digest"):
            RegistrySidecarSource(fetcher).fetch(identity, DigestAlgorithm.SHA256)


# ---------------------------------------------------------------------------
# Vendor pages
# ---------------------------------------------------------------------------

GO_PAGE = f"""
<tr class="highlight">
  <td class="filename"><a class="download" href="/dl/go1.22.1.linux-amd64.tar.gz">go1.22.1.linux-amd64.tar.gz</a></td>
  <td>Archive</td>
  <td>Linux</td>
  <td>x86-64</td>
  <td>66MB</td>
  <td><tt>{DIGEST_A}</tt></td>
</tr>
<tr>
  <td class="filename"><a class="download" href="/dl/go1.22.1.linux-arm64.tar.gz">go1.22.1.linux-arm64.tar.gz</a></td>
  <td>Archive</td>
  <td>Linux</td>
  <td>ARM64</td>
  <td>63MB</td>
  <td><tt>{DIGEST_B}</tt></td>
</tr>
"""

RUBY_PAGE = f"""
<h3><a href="/en/news/">Ruby 3.3.5</a></h3>
<p>sha256: <span>{DIGEST_B}</span></p>
"""


class TestVendorPageSource:
    def _go(self, arch: str = "amd64") -> ArtifactIdentity:
        filename = f"go1.22.1.linux-{arch}.tar.gz"
        return ArtifactIdentity(
            name="go", version="1.22.1", filename=filename, url=f"https://go.dev/dl/{filename}"
        )

    def test_go_table_row(self, fetcher: HttpFetcher, upstream):
        upstream.add("https://go.dev/dl/", GO_PAGE)
        assert VendorPageSource(fetcher).fetch(self._go(), DigestAlgorithm.SHA256).digest == DIGEST_A
        assert VendorPageSource(fetcher).fetch(self._go("arm64"), DigestAlgorithm.SHA256).digest == DIGEST_B

    def test_ruby_strips_markup(self, fetcher: HttpFetcher, upstream):
        upstream.add("https://www.ruby-lang.org/en/downloads/", RUBY_PAGE)
        identity = ArtifactIdentity(
            name="ruby",
            version="3.3.5",
            filename="ruby-3.3.5.tar.gz",
            url="https://cache.ruby-lang.org/pub/ruby/3.3/ruby-3.3.5.tar.gz",
        )
        assert VendorPageSource(fetcher).fetch(identity, DigestAlgorithm.SHA256).digest == DIGEST_B

    def test_sha512_refused_before_fetch(self, fetcher: HttpFetcher, upstream):
        with pytest.raises(AlgorithmMismatch):
            VendorPageSource(fetcher).fetch(self._go(), DigestAlgorithm.SHA512)
        assert upstream.calls == []

    def test_page_without_entry(self, fetcher: HttpFetcher, upstream):
        upstream.add("https://go.dev/dl/", "<html>redesigned</html>")
        with pytest.raises(ChecksumNotFoundInManifest):
            VendorPageSource(fetcher).fetch(self._go(), DigestAlgorithm.SHA256)

    def test_unknown_vendor(self, fetcher: HttpFetcher):
        identity = ArtifactIdentity(name="zig", version="0.13.0", filename="zig.tar.xz", url="https://ziglang.org/zig.tar.xz")
        with pytest.raises(ChecksumNotFoundInManifest, match="no vendor page pattern"):
            VendorPageSource(fetcher).fetch(identity, DigestAlgorithm.SHA256)

    def test_logs_warning(self, fetcher: HttpFetcher, upstream, caplog):
        upstream.add("https://go.dev/dl/", GO_PAGE)
        with caplog.at_level("WARNING", logger="artiguard.core.checksum_sources"):
            VendorPageSource(fetcher).fetch(self._go(), DigestAlgorithm.SHA256)
        assert "prefer a pinned checksum" in caplog.text


# ---------------------------------------------------------------------------
# Pinned table
# ---------------------------------------------------------------------------


class TestPinnedChecksumSource:
    TABLE = {
        "languages": {
            "python": {"versions": {"3.12.7": {"sha256": DIGEST_A}}},
            "ruby": {"versions": {"3.3.5": {"sha256": "placeholder_actual_checksum_needed"}}},
        },
        "tools": {
            "gh": {"versions": {"2.60.1": {"sha256": {"amd64": DIGEST_A, "arm64": DIGEST_B}}}},
            "legacy": {"versions": {"1.0.0": {"sha1": SHA1}}},
        },
    }

    def _identity(self, name: str, version: str, arch: str = "amd64") -> ArtifactIdentity:
        return ArtifactIdentity(name=name, version=version, filename=f"{name}.tar.gz", url="https://x.test/a", arch=arch)

    def test_language_entry(self):
        source = PinnedChecksumSource(table=self.TABLE)
        assert source.fetch(self._identity("python", "3.12.7"), DigestAlgorithm.SHA256).digest == DIGEST_A

    def test_per_arch_entry(self):
        source = PinnedChecksumSource(table=self.TABLE)
        assert source.fetch(self._identity("gh", "2.60.1", "arm64"), DigestAlgorithm.SHA256).digest == DIGEST_B

    def test_placeholder_is_absent(self):
        source = PinnedChecksumSource(table=self.TABLE)
        with pytest.raises(ChecksumNotFoundInManifest, match="placeholder"):
            source.fetch(self._identity("ruby", "3.3.5"), DigestAlgorithm.SHA256)

    def test_unpinned_version(self):
        source = PinnedChecksumSource(table=self.TABLE)
        with pytest.raises(ChecksumNotFoundInManifest, match="not pinned"):
            source.fetch(self._identity("python", "3.11.0"), DigestAlgorithm.SHA256)

    def test_weaker_algorithm_not_substituted(self):
        source = PinnedChecksumSource(table=self.TABLE)
        with pytest.raises(AlgorithmMismatch, match="sha1"):
            source.fetch(self._identity("legacy", "1.0.0"), DigestAlgorithm.SHA256)

    def test_reads_table_file(self, tmp_dir: Path):
        path = tmp_dir / "checksums.json"
        path.write_text(json.dumps(self.TABLE), encoding="utf-8")
        record = PinnedChecksumSource(path).fetch(self._identity("python", "3.12.7"), DigestAlgorithm.SHA256)
        assert record.source == str(path)

    def test_missing_table_file_pins_nothing(self, tmp_dir: Path):
        source = PinnedChecksumSource(tmp_dir / "absent.json")
        with pytest.raises(ChecksumNotFoundInManifest):
            source.fetch(self._identity("python", "3.12.7"), DigestAlgorithm.SHA256)

    def test_unparseable_table_file(self, tmp_dir: Path):
        path = tmp_dir / "checksums.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(InvalidChecksumFormat, match="unreadable pinned table") as exc_info:
            PinnedChecksumSource(path).fetch(self._identity("python", "3.12.7"), DigestAlgorithm.SHA256)
        assert exc_info.value.source == str(path)

    @pytest.mark.parametrize(
        "table",
        [
            {"tools": {"gh": {"versions": {"2.60.1": DIGEST_A}}}},
            {"tools": {"gh": {"versions": [DIGEST_A]}}},
            {"tools": ["gh"]},
            [DIGEST_A],
        ],
        ids=["bare-digest-entry", "versions-list", "section-list", "top-level-list"],
    )
    def test_malformed_table_is_a_typed_failure(self, table):
        with pytest.raises(InvalidChecksumFormat, match="pinned"):
            PinnedChecksumSource(table=table).fetch(self._identity("gh", "2.60.1"), DigestAlgorithm.SHA256)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestChecksumFetcher:
    def test_one_adapter_per_kind(self, fetcher: HttpFetcher):
        assert set(build_sources(fetcher)) == set(SourceKind)

    def test_dispatch_by_kind(self, fetcher: HttpFetcher, upstream):
        upstream.add(f"{RELEASE}/checksums.txt", f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n")
        record = ChecksumFetcher(fetcher).fetch("aggregate_manifest", _identity(), "sha256")
        assert record.digest == DIGEST_A

    def test_unknown_kind_rejected(self, fetcher: HttpFetcher):
        with pytest.raises(ValueError):
            ChecksumFetcher(fetcher).fetch("guess", _identity(), "sha256")

    def test_injected_adapter(self, fetcher: HttpFetcher):
        pinned = PinnedChecksumSource(table=TestPinnedChecksumSource.TABLE)
        checksums = ChecksumFetcher(fetcher, {SourceKind.PINNED: pinned})
        identity = ArtifactIdentity(name="python", version="3.12.7", filename="Python-3.12.7.tgz", url="https://x.test/p")
        assert checksums.fetch(SourceKind.PINNED, identity, DigestAlgorithm.SHA256).digest == DIGEST_A


class TestFetchFirst:
    """Sources are consulted in order; only a missing entry moves on."""

    SUMS = f"{RELEASE}/checksums.txt"

    def _checksums(self, fetcher: HttpFetcher, table: dict) -> ChecksumFetcher:
        return ChecksumFetcher(fetcher, {SourceKind.PINNED: PinnedChecksumSource(table=table)})

    def _identity(self) -> ArtifactIdentity:
        return _identity(name="gh", checksum_url=self.SUMS)

    def test_pinned_entry_wins_without_network(self, fetcher: HttpFetcher, upstream):
        table = {"tools": {"gh": {"versions": {"2.60.1": {"sha256": DIGEST_B}}}}}
        record = self._checksums(fetcher, table).fetch_first(
            [SourceKind.PINNED, SourceKind.AGGREGATE_MANIFEST], self._identity(), DigestAlgorithm.SHA256
        )
        assert record.digest == DIGEST_B
        assert record.provenance.source_kind == SourceKind.PINNED
        assert upstream.calls == []

    def test_pinned_miss_then_manifest_hit(self, fetcher: HttpFetcher, upstream):
        upstream.add(self.SUMS, f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n")
        record = self._checksums(fetcher, {}).fetch_first(
            [SourceKind.PINNED, SourceKind.AGGREGATE_MANIFEST], self._identity(), DigestAlgorithm.SHA256
        )
        assert record.digest == DIGEST_A
        assert record.provenance.source_kind == SourceKind.AGGREGATE_MANIFEST
        assert record.source == self.SUMS

    def test_pinned_algorithm_mismatch_does_not_fall_through(self, fetcher: HttpFetcher, upstream):
        upstream.add(self.SUMS, f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n")
        table = {"tools": {"gh": {"versions": {"2.60.1": {"sha1": SHA1}}}}}
        with pytest.raises(AlgorithmMismatch):
            self._checksums(fetcher, table).fetch_first(
                [SourceKind.PINNED, SourceKind.AGGREGATE_MANIFEST], self._identity(), DigestAlgorithm.SHA256
            )
        assert upstream.calls == []

    def test_malformed_pinned_table_does_not_fall_through(self, fetcher: HttpFetcher, upstream):
        upstream.add(self.SUMS, f"{DIGEST_A}  artifact-linux-amd64.tar.gz\n")
        table = {"tools": {"gh": {"versions": {"2.60.1": DIGEST_B}}}}
        with pytest.raises(InvalidChecksumFormat):
            self._checksums(fetcher, table).fetch_first(
                [SourceKind.PINNED, SourceKind.AGGREGATE_MANIFEST], self._identity(), DigestAlgorithm.SHA256
            )
        assert upstream.calls == []

    def test_every_source_missing(self, fetcher: HttpFetcher, upstream):
        upstream.add(self.SUMS, f"{DIGEST_A}  something-else.tar.gz\n")
        with pytest.raises(ChecksumNotFoundInManifest, match="pinned: .*aggregate_manifest: "):
            self._checksums(fetcher, {}).fetch_first(
                [SourceKind.PINNED, SourceKind.AGGREGATE_MANIFEST], self._identity(), DigestAlgorithm.SHA256
            )

    def test_requires_a_source(self, fetcher: HttpFetcher):
        with pytest.raises(ValueError):
            ChecksumFetcher(fetcher).fetch_first([], self._identity(), DigestAlgorithm.SHA256)
