"""Retrieval configuration — env-driven, then passed explicitly.

Centralized config using pydantic-settings. Reads from a .env file and
ARTIGUARD_* environment variables once, at the edge (the CLI or the calling
build script); every component then receives the resulting ``FetchConfig``
as an argument instead of consulting the process environment itself.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_scratch_dir() -> Path:
    return Path(tempfile.gettempdir()) / "artiguard-downloads"


class FetchConfig(BaseSettings):
    """Timeouts, retry policy, and paths for artifact retrieval.

    Examples
    --------
    Override via environment::

        export ARTIGUARD_CONNECT_TIMEOUT=5
        export ARTIGUARD_RETRY_MAX_ATTEMPTS=5
        export ARTIGUARD_PINNED_CHECKSUMS_PATH=/build/lib/checksums.json
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ARTIGUARD_",
        env_file_encoding="utf-8",
        frozen=True,
    )

    log_level: str = "INFO"

    # Scratch space for in-flight downloads
    scratch_dir: Path = _default_scratch_dir()

    # Network policy (seconds).  Connect and total-transfer bounds are
    # independent; download_timeout bounds artifact transfers.
    connect_timeout: float = 10.0
    transfer_timeout: float = 30.0
    download_timeout: float = 300.0

    # Retries apply to metadata and checksum fetches only
    retry_max_attempts: int = 3
    retry_initial_delay: float = 2.0
    retry_max_delay: float = 30.0

    chunk_size: int = 64 * 1024
    user_agent: str = "artiguard/0.3.0"

    # Git-tracked checksum table for the pinned source
    pinned_checksums_path: Path | None = None

    # Ecosystem name -> listing URL, replacing the built-in upstream listing
    version_listing_overrides: dict[str, str] = {}


def load_config(**overrides: object) -> FetchConfig:
    """Build a FetchConfig from the environment plus explicit overrides."""
    return FetchConfig(**overrides)
