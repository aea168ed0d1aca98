"""``topoforge fingerprint PATH`` — content fingerprint of a build input.

Prints the digest that names the artifact built from ``PATH``. The
version comes from ``--version`` or, when omitted, from the version
manifest inside ``PATH``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from topoforge.core.hasher import InputNotFound, fingerprint, read_declared_version

console = Console()


def fingerprint_cmd(
    path: Path = typer.Argument(..., help="Build context directory or single file."),
    version: str = typer.Option(
        None,
        "--version",
        "-v",
        help="Declared version. Read from the context's manifest if omitted.",
    ),
    short: bool = typer.Option(False, "--short", help="Print only the digest."),
) -> None:
    """Compute the content fingerprint of PATH."""
    try:
        declared = version if version is not None else read_declared_version(path)
        fp = fingerprint(path, declared)
    except InputNotFound as exc:
        console.print(f"[bold red]Input not found:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if short:
        console.print(fp.digest, highlight=False)
        return
    console.print(f"[bold]Path:[/bold]     {path}")
    console.print(f"[bold]Version:[/bold]  {fp.version}")
    console.print(f"[bold]Files:[/bold]    {fp.file_count}")
    console.print(f"[bold]Digest:[/bold]   [cyan]{fp.digest}[/cyan]", highlight=False)
