"""``artiguard resolve | checksum | validate`` — metadata lookups.

None of these download an artifact.  Each prints a single value on stdout
so that a build script can capture it.
"""

from __future__ import annotations

import typer

from artiguard import api
from artiguard.cli.commands.common import console, get_config, reported_errors
from artiguard.core.orchestrator import artifact_name
from artiguard.models.artifacts import (
    ArtifactIdentity,
    DigestAlgorithm,
    Ecosystem,
    SourceKind,
)


def resolve_cmd(
    ctx: typer.Context,
    ecosystem: Ecosystem = typer.Argument(..., help="Ecosystem whose listing to consult."),
    specifier: str = typer.Argument(..., help="Version, e.g. 3.12 or 3.12.7."),
) -> None:
    """Print the newest concrete version matching SPECIFIER.

    Concrete versions and bare majors are echoed back without a lookup.
    """
    with reported_errors():
        version = api.resolve_version(ecosystem, specifier, config=get_config(ctx))
    typer.echo(version)


def checksum_cmd(
    ctx: typer.Context,
    source_kind: SourceKind = typer.Argument(..., help="Where to obtain the checksum."),
    name: str = typer.Argument(..., help="Artifact name, e.g. go or ruby."),
    version: str = typer.Argument(..., help="Concrete artifact version."),
    url: str = typer.Argument(..., help="Artifact download URL."),
    checksum_url: str = typer.Option(
        "",
        "--checksum-url",
        "-c",
        help="Manifest, sidecar or vendor page URL (defaults depend on the source).",
    ),
    filename: str = typer.Option(
        "", "--filename", "-f", help="File name to look up (defaults to the URL's)."
    ),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
    arch: str = typer.Option("amd64", "--arch", help="Architecture for pinned entries."),
) -> None:
    """Print the expected digest of an artifact."""
    identity = ArtifactIdentity(
        name=name,
        version=version,
        filename=filename or artifact_name(url),
        url=url,
        checksum_url=checksum_url,
        arch=arch,
    )
    with reported_errors():
        record = api.fetch_checksum(source_kind, identity, algorithm, config=get_config(ctx))
    console.print(f"[dim]{record.algorithm.value} from {record.source}[/dim]")
    typer.echo(record.digest)


def validate_cmd(
    digest: str = typer.Argument(..., help="Hex digest to check."),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
) -> None:
    """Check that DIGEST is a well-formed hex digest for the algorithm."""
    with reported_errors():
        api.validate_checksum_format(digest, algorithm)
    typer.echo("valid")
