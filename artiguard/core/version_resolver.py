"""Version resolution — partial ``X.Y`` specifiers to concrete ``X.Y.Z``.

Only the narrow two-component shape is resolved.  A bare major (``"3"``) or
an already concrete version (``"3.12.7"``, ``"21.0.5"``) passes through
unchanged without touching the network.  A partial specifier costs exactly
one lookup of the ecosystem's canonical version listing.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from artiguard.core.fetcher import HttpFetcher
from artiguard.errors import (
    UpstreamUnavailable,
    VersionNotFound,
    VersionResolutionNetworkError,
)
from artiguard.models.artifacts import Ecosystem, ResolvedVersion

logger = logging.getLogger(__name__)

_CONCRETE_RE = re.compile(r"\d+\.\d+\.\d+")


@dataclass(frozen=True)
class VersionListing:
    """Where an ecosystem publishes its versions and how to read them.

    ``url`` may contain ``{major}``; ``parse`` returns every version string
    found in the listing body, in any order and possibly with non-concrete
    entries mixed in.
    """

    url: str
    parse: Callable[[str], list[str]]


def _parse_python_index(body: str) -> list[str]:
    # python.org/ftp/python/ directory index: <a href="3.12.7/">3.12.7/</a>
    return re.findall(r">(\d+\.\d+\.\d+)/", body)


def _parse_node_index(body: str) -> list[str]:
    return [
        entry["version"].removeprefix("v")
        for entry in json.loads(body)
        if isinstance(entry, dict) and "version" in entry
    ]


def _parse_github_tags(body: str) -> list[str]:
    return [
        entry["tag_name"].removeprefix("v")
        for entry in json.loads(body)
        if isinstance(entry, dict) and "tag_name" in entry
    ]


def _parse_adoptium(body: str) -> list[str]:
    versions: list[str] = []
    for entry in json.loads(body):
        semver = (entry.get("version_data") or {}).get("semver", "")
        if semver:
            versions.append(semver.split("+", 1)[0])
    return versions


def _parse_ruby_releases(body: str) -> list[str]:
    return re.findall(r"Ruby (\d+\.\d+\.\d+)", body)


def _parse_go_index(body: str) -> list[str]:
    return [
        entry["version"].removeprefix("go")
        for entry in json.loads(body)
        if isinstance(entry, dict) and "version" in entry
    ]


DEFAULT_LISTINGS: dict[Ecosystem, VersionListing] = {
    Ecosystem.PYTHON: VersionListing(
        "https://www.python.org/ftp/python/", _parse_python_index
    ),
    Ecosystem.NODE: VersionListing(
        "https://nodejs.org/dist/index.json", _parse_node_index
    ),
    Ecosystem.RUST: VersionListing(
        "https://api.github.com/repos/rust-lang/rust/releases?per_page=100",
        _parse_github_tags,
    ),
    Ecosystem.JAVA: VersionListing(
        "https://api.adoptium.net/v3/assets/feature_releases/{major}/ga",
        _parse_adoptium,
    ),
    Ecosystem.RUBY: VersionListing(
        "https://www.ruby-lang.org/en/downloads/releases/", _parse_ruby_releases
    ),
    Ecosystem.GO: VersionListing(
        "https://go.dev/dl/?mode=json&include=all", _parse_go_index
    ),
}

_missing = set(Ecosystem) - set(DEFAULT_LISTINGS)
if _missing:  # pragma: no cover - guarded at import
    raise RuntimeError(f"No version listing for ecosystems: {sorted(e.value for e in _missing)}")


def is_partial_version(specifier: str) -> bool:
    """True for the ``X.Y`` shape: exactly one separator."""
    return specifier.count(".") == 1


def version_key(version: str) -> tuple[int, ...]:
    """Numeric sort key, so ``1.23.10`` orders after ``1.23.9``."""
    return tuple(int(part) for part in version.split("."))


def newest_matching(specifier: str, candidates: list[str]) -> str | None:
    """Return the newest concrete ``specifier.N`` among *candidates*."""
    prefix = f"{specifier}."
    matching = {
        v for v in candidates
        if _CONCRETE_RE.fullmatch(v) and v.startswith(prefix)
    }
    if not matching:
        return None
    return max(matching, key=version_key)


class VersionResolver:
    """Resolves partial version specifiers against upstream listings.

    Parameters
    ----------
    fetcher:
        The network chokepoint used for the single listing lookup.
    listings:
        Per-ecosystem listing overrides, merged over ``DEFAULT_LISTINGS``.
    """

    def __init__(
        self,
        fetcher: HttpFetcher,
        listings: dict[Ecosystem, VersionListing] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._listings = dict(DEFAULT_LISTINGS)
        for name, url in fetcher.config.version_listing_overrides.items():
            eco = Ecosystem(name)
            self._listings[eco] = VersionListing(url, self._listings[eco].parse)
        if listings:
            self._listings.update(listings)

    def resolve(self, ecosystem: Ecosystem | str, specifier: str) -> ResolvedVersion:
        """Return the concrete version for *specifier*.

        Raises ``VersionNotFound`` when nothing in the listing matches or the
        ecosystem is unknown, and ``VersionResolutionNetworkError`` when the
        listing is unreachable.
        """
        specifier = specifier.strip()
        if not is_partial_version(specifier):
            return ResolvedVersion(specifier=specifier, version=specifier)

        try:
            eco = Ecosystem(ecosystem)
        except ValueError as e:
            raise VersionNotFound(
                f"cannot resolve {specifier!r}: unknown ecosystem {ecosystem!r}",
                artifact=str(ecosystem),
            ) from e

        listing = self._listings[eco]
        url = listing.url.format(major=specifier.split(".", 1)[0])
        try:
            body = self._fetcher.get_text(url)
        except UpstreamUnavailable as e:
            raise VersionResolutionNetworkError(
                f"cannot resolve {specifier!r}: version listing unreachable ({e.reason})",
                artifact=eco.value,
                source=url,
            ) from e

        try:
            candidates = listing.parse(body)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise VersionNotFound(
                f"cannot resolve {specifier!r}: unreadable version listing ({e})",
                artifact=eco.value,
                source=url,
            ) from e

        resolved = newest_matching(specifier, candidates)
        if resolved is None:
            raise VersionNotFound(
                f"no release matches {specifier}.x",
                artifact=eco.value,
                source=url,
            )

        logger.info("Resolved %s %s -> %s", eco.value, specifier, resolved)
        return ResolvedVersion(specifier=specifier, version=resolved, resolved=True)
