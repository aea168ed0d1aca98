"""``topoforge publish`` — publish an image and a static bundle locally.

Publishes to the directory-backed registry and bucket named by the
runtime config, then records the published artifacts in a JSON state
file that ``topoforge plan`` reads.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import TypeAdapter
from rich.console import Console
from rich.table import Table

from topoforge.config import config
from topoforge.core.backends import LocalBucket, LocalRegistry
from topoforge.core.hasher import InputNotFound
from topoforge.core.publisher import (
    ArtifactPublisher,
    BuildFailed,
    PushFailed,
    UnsupportedContentType,
)
from topoforge.models.artifacts import Artifact

console = Console()

ARTIFACT_LIST = TypeAdapter(list[Artifact])


def read_state(path: Path) -> list[Artifact]:
    """Load published artifacts from a state file; missing file means none."""
    if not path.exists():
        return []
    return ARTIFACT_LIST.validate_json(path.read_bytes())


def write_state(path: Path, artifacts: list[Artifact]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = ARTIFACT_LIST.dump_python(artifacts, mode="json")
    path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def publish_cmd(
    build_context: Path = typer.Argument(..., help="Image build context directory."),
    static_dir: Path = typer.Argument(..., help="Directory holding the static bundle."),
    image_name: str = typer.Option("backend", "--image-name", help="Name of the image artifact."),
    bundle_name: str = typer.Option("frontend", "--bundle-name", help="Name of the bundle artifact."),
    state: Path = typer.Option(
        Path(".topoforge/artifacts.json"),
        "--state",
        "-s",
        help="State file recording published artifacts.",
    ),
) -> None:
    """Publish the image and bundle, skipping anything already published."""
    registry = LocalRegistry(config.registry_path)
    bucket = LocalBucket(config.bucket_path, config.bucket_name, region=config.region)
    publisher = ArtifactPublisher(
        registry,
        bucket,
        content_type_fallback=config.content_type_fallback,
        max_workers=config.publish_workers,
    )

    try:
        published = publisher.publish_all(
            images=[(image_name, build_context, config.registry_name)],
            bundles=[(bundle_name, static_dir)],
        )
    except InputNotFound as exc:
        console.print(f"[bold red]Input not found:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except (BuildFailed, PushFailed, UnsupportedContentType) as exc:
        console.print(f"[bold red]Publish failed:[/bold red] {exc}")
        raise typer.Exit(code=1)

    merged = {a.name: a for a in read_state(state)}
    merged.update(published)
    write_state(state, [merged[name] for name in sorted(merged)])

    table = Table(title="Published Artifacts")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Reference")
    table.add_column("Status", justify="center")
    for result in publisher.results:
        artifact = result.artifact
        status = "[dim]unchanged[/dim]" if result.skipped else "[green]published[/green]"
        table.add_row(artifact.name, artifact.kind.value, artifact.reference, status)
    console.print(table)
    console.print(f"[dim]State written to {state}[/dim]")
