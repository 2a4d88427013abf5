"""``artiguard fetch | extract | retrieve | verify`` — verified downloads.

Each prints the installed path (or extraction directory, or the file
checked) on stdout once the artifact's digest has matched.  A checksum
mismatch exits with code 3.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from artiguard import api
from artiguard.cli.commands.common import console, get_config, reported_errors
from artiguard.models.artifacts import (
    ArtifactRequest,
    ChecksumProvenance,
    ChecksumRecord,
    DigestAlgorithm,
    Ecosystem,
    SourceKind,
)


def _given_record(digest: str, algorithm: DigestAlgorithm) -> ChecksumRecord:
    return ChecksumRecord(
        digest=digest,
        algorithm=algorithm,
        provenance=ChecksumProvenance(
            source_kind=SourceKind.PINNED, location="command line"
        ),
    )


def fetch_cmd(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Artifact download URL."),
    dest: Path = typer.Argument(..., help="Where to install the verified file."),
    checksum: str = typer.Option(..., "--checksum", "-c", help="Expected hex digest."),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
) -> None:
    """Download URL and install it at DEST only if it matches --checksum."""
    with reported_errors():
        installed = api.download_and_verify(
            url, dest, _given_record(checksum, algorithm), config=get_config(ctx)
        )
    console.print(
        f"[green]Verified[/green] {installed.size_bytes} bytes "
        f"({installed.algorithm.value})"
    )
    typer.echo(str(installed.path))


def extract_cmd(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Archive download URL."),
    dest_dir: Path = typer.Argument(..., help="Directory to unpack into."),
    checksum: str = typer.Option(
        ..., "--checksum", "-c", help="Expected hex digest of the archive."
    ),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
    member: Optional[List[str]] = typer.Option(
        None, "--member", "-m", help="Extract only this member (repeatable)."
    ),
) -> None:
    """Verify the archive at URL, then unpack it into DEST_DIR."""
    with reported_errors():
        extracted = api.download_and_extract(
            url,
            dest_dir,
            _given_record(checksum, algorithm),
            config=get_config(ctx),
            members=list(member) if member else None,
        )
    console.print(f"[green]Extracted[/green] {len(extracted.members)} member(s)")
    typer.echo(str(extracted.dest_dir))


def retrieve_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Artifact name, e.g. go or node."),
    version: str = typer.Argument(..., help="Version, possibly partial (X.Y)."),
    dest: Path = typer.Argument(..., help="Where to install the verified file."),
    url_template: str = typer.Option(
        ...,
        "--url",
        help="Download URL; may use {version} and {arch}.",
    ),
    source: SourceKind = typer.Option(
        SourceKind.PINNED,
        "--source",
        "-s",
        help="Where to obtain the checksum when the pinned table has no entry.",
    ),
    checksum_url_template: str = typer.Option(
        "",
        "--checksum-url",
        help="Checksum location; may use {version}, {arch} and {filename}.",
    ),
    filename_template: str = typer.Option(
        "", "--filename", help="Artifact file name; may use {version} and {arch}."
    ),
    ecosystem: Optional[Ecosystem] = typer.Option(
        None, "--ecosystem", "-e", help="Ecosystem used to resolve a partial version."
    ),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
    arch: str = typer.Option("amd64", "--arch", help="Target architecture."),
) -> None:
    """Resolve VERSION, obtain its checksum, then download and verify."""
    request = ArtifactRequest(
        name=name,
        version=version,
        algorithm=algorithm,
        source_kind=source,
        url_template=url_template,
        checksum_url_template=checksum_url_template,
        filename_template=filename_template,
        ecosystem=ecosystem,
        arch=arch,
    )
    with reported_errors():
        installed = api.retrieve(request, dest, config=get_config(ctx))
    console.print(f"[green]Installed[/green] {name} ({installed.digest[:12]}…)")
    typer.echo(str(installed.path))


def verify_cmd(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="File already on disk."),
    checksum: str = typer.Option(..., "--checksum", "-c", help="Expected hex digest."),
    algorithm: DigestAlgorithm = typer.Option(
        DigestAlgorithm.SHA256, "--algorithm", "-a", help="Digest algorithm."
    ),
) -> None:
    """Check that the file at PATH matches --checksum."""
    with reported_errors():
        api.verify_checksum(path, _given_record(checksum, algorithm), config=get_config(ctx))
    typer.echo(str(path))
