"""Helpers shared by the CLI commands."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

import typer
from rich.console import Console
from rich.markup import escape

from artiguard.config import FetchConfig
from artiguard.errors import ArtiguardError, ChecksumMismatch

console = Console(stderr=True)

EXIT_FAILURE = 1
EXIT_CHECKSUM_MISMATCH = 3


def get_config(ctx: typer.Context) -> FetchConfig:
    """The FetchConfig loaded by the app callback."""
    return ctx.ensure_object(dict)["config"]


@contextlib.contextmanager
def reported_errors() -> Iterator[None]:
    """Turn retrieval errors into a red message and a non-zero exit.

    A checksum mismatch gets its own exit code so build scripts can tell
    possible tampering apart from an ordinary failure.
    """
    try:
        yield
    except ChecksumMismatch as e:
        console.print(f"[bold red]Checksum mismatch:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CHECKSUM_MISMATCH) from e
    except ArtiguardError as e:
        console.print(f"[bold red]Failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_FAILURE) from e
