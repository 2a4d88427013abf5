"""Shared test fixtures for Artiguard."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable
from pathlib import Path

import httpx
import pytest

from artiguard.config import FetchConfig
from artiguard.core.fetcher import HttpFetcher
from artiguard.core.scratch import CleanupRegistry, ScratchDirectory
from artiguard.models.artifacts import (
    ChecksumProvenance,
    ChecksumRecord,
    DigestAlgorithm,
    SourceKind,
)

Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeUpstream:
    """Canned responses keyed by full URL, with a call log.

    A route may be a single response, a callable, or a list of either that
    is consumed one per request (the last entry repeats).
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Route]] = {}
        self.calls: list[str] = []

    def add(
        self,
        url: str,
        content: bytes | str | Iterable[bytes] = b"",
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        if isinstance(content, str):
            content = content.encode()
        # A fresh response per request; a Response object is single-use
        self.routes[url] = [
            lambda request: httpx.Response(status, content=content, headers=headers)
        ]

    def add_sequence(self, url: str, responses: list[Route]) -> None:
        self.routes[url] = list(responses)

    def count(self, url: str) -> int:
        return self.calls.count(url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        queue = self.routes.get(url)
        if not queue:
            return httpx.Response(404, content=b"not found")
        route = queue.pop(0) if len(queue) > 1 else queue[0]
        return route(request) if callable(route) else route


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def config(tmp_dir: Path) -> FetchConfig:
    """FetchConfig with a private scratch dir and no retry sleeps."""
    return FetchConfig(
        scratch_dir=tmp_dir / "scratch",
        retry_max_attempts=3,
        retry_initial_delay=0,
        retry_max_delay=0,
        transfer_timeout=5.0,
        download_timeout=5.0,
        chunk_size=1024,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def fetcher(config: FetchConfig, upstream: FakeUpstream) -> HttpFetcher:
    """HttpFetcher whose client is backed by the fake upstream."""
    client = httpx.Client(transport=httpx.MockTransport(upstream.handler), follow_redirects=True)
    yield HttpFetcher(config, client=client)
    client.close()


@pytest.fixture
def registry(monkeypatch: pytest.MonkeyPatch) -> CleanupRegistry:
    """A cleanup registry that does not touch the test process's signal handlers."""
    reg = CleanupRegistry()
    monkeypatch.setattr(reg, "_install_hooks", lambda: None)
    return reg


@pytest.fixture
def scratch(config: FetchConfig, registry: CleanupRegistry) -> ScratchDirectory:
    return ScratchDirectory(config.scratch_dir, registry)


@pytest.fixture
def make_record() -> Callable[[bytes], ChecksumRecord]:
    """Build a sha256 ChecksumRecord for given bytes."""

    def _make(data: bytes) -> ChecksumRecord:
        return ChecksumRecord(
            digest=sha256_hex(data),
            algorithm=DigestAlgorithm.SHA256,
            provenance=ChecksumProvenance(source_kind=SourceKind.PINNED, location="test"),
        )

    return _make
