"""Artiguard: integrity-verified retrieval of third-party build artifacts.

Obtains a checksum from the most authoritative available source, checks
that it is well-formed, downloads the artifact, and installs it only once
its digest matches.  Nothing unverified is ever left on disk, even when
the process is interrupted mid-download.
"""

__version__ = "0.3.0"
__description__ = "Integrity-verified retrieval of third-party build artifacts"

from artiguard.api import (
    download_and_extract,
    download_and_verify,
    fetch_checksum,
    resolve_version,
    retrieve,
    validate_checksum_format,
    verify_checksum,
)
from artiguard.config import FetchConfig, load_config

__all__ = [
    "FetchConfig",
    "load_config",
    "resolve_version",
    "fetch_checksum",
    "validate_checksum_format",
    "verify_checksum",
    "download_and_verify",
    "download_and_extract",
    "retrieve",
    "__version__",
]
