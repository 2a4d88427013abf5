"""Artiguard CLI — Typer-based command-line interface.

Provides the ``artiguard`` command for build scripts: resolve a version,
obtain or validate a checksum, and fetch, extract or retrieve a verified
artifact.

Values meant for scripts (versions, digests, paths) go to stdout as plain
text; status and errors are printed to stderr with Rich.
"""
