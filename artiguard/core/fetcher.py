"""Network fetch wrapper — the single chokepoint for outbound HTTP.

Every upstream call goes through ``HttpFetcher`` so that timeout and retry
policy live in one place:

- A bounded connect timeout and an independent total-transfer deadline.  A
  connection that stays open but stalls still ends at the deadline.
- Bounded exponential-backoff retries (tenacity) for idempotent metadata and
  checksum fetches.  Artifact downloads are never retried.
- Only http and https URLs are accepted.
"""

from __future__ import annotations

import logging
import time
from typing import BinaryIO
from urllib.parse import urlparse

import httpx
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from artiguard.config import FetchConfig
from artiguard.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

# Status codes worth retrying: rate limiting and server-side hiccups.
RETRYABLE_STATUS_CODES = frozenset((429, 500, 502, 503, 504))


class TransferDeadlineExceeded(httpx.TimeoutException):
    """The total-transfer deadline elapsed while the body was streaming."""


class _RetryableStatus(Exception):
    """Internal marker: a response status that should be retried."""

    def __init__(self, response: httpx.Response) -> None:
        self.status_code = response.status_code
        super().__init__(f"HTTP {response.status_code}")


def validate_url_scheme(url: str) -> None:
    """Refuse anything but http/https (no file://, ftp://, ...)."""
    scheme = urlparse(url).scheme
    if scheme not in _ALLOWED_SCHEMES:
        raise UpstreamUnavailable(
            f"URL scheme {scheme!r} is not allowed; only http/https are fetched",
            source=url,
        )


def _is_rate_limited(response: httpx.Response) -> bool:
    """Release-hosting APIs answer 403 with an exhausted quota header."""
    return (
        response.status_code == 403
        and response.headers.get("x-ratelimit-remaining") == "0"
    )


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (_RetryableStatus, httpx.TransportError))


class HttpFetcher:
    """Bounded-timeout, bounded-retry HTTP GET.

    Parameters
    ----------
    config:
        Timeouts and retry policy.
    client:
        Optional pre-built ``httpx.Client`` (tests inject one backed by
        ``httpx.MockTransport``).  When omitted, one is created and owned
        by this fetcher.
    """

    def __init__(self, config: FetchConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=config.connect_timeout,
                read=config.transfer_timeout,
                write=config.transfer_timeout,
                pool=config.connect_timeout,
            ),
            follow_redirects=True,
            headers={"User-Agent": config.user_agent},
        )

    @property
    def config(self) -> FetchConfig:
        return self._config

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Metadata and checksum fetches
    # ------------------------------------------------------------------

    def get_text(self, url: str, *, retry: bool = True) -> str:
        """GET a small text document, retrying transient failures.

        Raises ``UpstreamUnavailable`` on a non-success response or once
        the retry budget is exhausted.
        """
        validate_url_scheme(url)
        attempts = self._config.retry_max_attempts if retry else 1
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(max(1, attempts)),
                wait=wait_exponential(
                    multiplier=self._config.retry_initial_delay,
                    max=self._config.retry_max_delay,
                ),
                retry=retry_if_exception(_is_transient),
                reraise=False,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return self._get_text_once(url)
                    except Exception as e:
                        last_error = e
                        if _is_transient(e) and attempt < attempts:
                            logger.warning(
                                "Attempt %d/%d for %s failed (%s); retrying",
                                attempt, attempts, url, e,
                            )
                        raise
        except RetryError as e:
            final = last_error or e.last_attempt.exception()
            raise UpstreamUnavailable(
                f"giving up after {attempts} attempt(s): {final}",
                source=url,
                status_code=getattr(final, "status_code", None),
            ) from final
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"HTTP {e.response.status_code}",
                source=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(str(e) or type(e).__name__, source=url) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def _get_text_once(self, url: str) -> str:
        deadline = time.monotonic() + self._config.transfer_timeout
        with self._client.stream("GET", url) as response:
            self._check_status(response)
            body = bytearray()
            for chunk in response.iter_bytes():
                body.extend(chunk)
                self._check_deadline(deadline, url)
            encoding = response.encoding or "utf-8"
        return body.decode(encoding, errors="replace")

    # ------------------------------------------------------------------
    # Artifact download
    # ------------------------------------------------------------------

    def download(self, url: str, handle: BinaryIO) -> int:
        """Stream an artifact into *handle*.  Never retried.

        Returns the number of bytes written.  Raises ``UpstreamUnavailable``
        on any failure; the caller owns cleanup of whatever was written.
        """
        validate_url_scheme(url)
        deadline = time.monotonic() + self._config.download_timeout
        written = 0
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise httpx.HTTPStatusError(
                        f"HTTP {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                for chunk in response.iter_bytes(self._config.chunk_size):
                    handle.write(chunk)
                    written += len(chunk)
                    self._check_deadline(deadline, url)
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"HTTP {e.response.status_code}",
                source=url,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(str(e) or type(e).__name__, source=url) from e
        handle.flush()
        return written

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_status(response: httpx.Response) -> None:
        if response.status_code in RETRYABLE_STATUS_CODES or _is_rate_limited(response):
            raise _RetryableStatus(response)
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}",
                request=response.request,
                response=response,
            )

    @staticmethod
    def _check_deadline(deadline: float, url: str) -> None:
        if time.monotonic() > deadline:
            raise TransferDeadlineExceeded(f"total transfer deadline exceeded for {url}")
