"""Main Typer application — imports and registers all CLI commands.

Entry point: ``artiguard`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from artiguard import __version__
from artiguard.cli.commands.common import console
from artiguard.cli.commands.lookup import checksum_cmd, resolve_cmd, validate_cmd
from artiguard.cli.commands.transfer import extract_cmd, fetch_cmd, retrieve_cmd, verify_cmd
from artiguard.config import load_config

app = typer.Typer(
    name="artiguard",
    help="Artiguard: integrity-verified retrieval of third-party build artifacts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def configure_logging(level: str) -> None:
    """Route library logging to stderr through Rich."""
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=False)
    package_logger = logging.getLogger("artiguard")
    package_logger.handlers = [handler]
    package_logger.setLevel(level.upper())


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Load configuration from ARTIGUARD_* variables and set up logging."""
    config = load_config()
    configure_logging("DEBUG" if verbose else config.log_level)
    ctx.ensure_object(dict)["config"] = config


# Register subcommands
app.command(name="resolve", help="Resolve a partial version against upstream.")(resolve_cmd)
app.command(name="checksum", help="Obtain the expected digest of an artifact.")(checksum_cmd)
app.command(name="validate", help="Check a digest's structural well-formedness.")(validate_cmd)
app.command(name="fetch", help="Download and verify a single file.")(fetch_cmd)
app.command(name="extract", help="Download, verify and unpack an archive.")(extract_cmd)
app.command(name="retrieve", help="Resolve, obtain checksum, download and verify.")(retrieve_cmd)
app.command(name="verify", help="Check a file on disk against a digest.")(verify_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
