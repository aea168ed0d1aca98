"""``topoforge plan [CONFIG]`` — assemble a deployment and show its graph.

Without ``CONFIG`` the standard three-tier layout is assembled from the
first published image and bundle in the state file. With ``CONFIG`` the
TOML file describes the deployment; published artifacts from the state
file are added to whatever artifacts it declares.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from topoforge.cli.commands.publish import read_state
from topoforge.config import config, load_deployment_config
from topoforge.core.assembler import TopologyInvalid, assemble
from topoforge.core.stack import three_tier_config
from topoforge.models.artifacts import Artifact, ArtifactKind
from topoforge.models.deployment import Deployment, DeploymentConfig
from topoforge.render.renderer import PlanRenderer

console = Console()


def _first(artifacts: list[Artifact], kind: ArtifactKind) -> Artifact | None:
    return next((a for a in artifacts if a.kind == kind), None)


def build_config(config_path: Path | None, state: Path) -> DeploymentConfig:
    """Combine the TOML config (or the three-tier preset) with published state."""
    published = read_state(state)
    if config_path is None:
        image = _first(published, ArtifactKind.IMAGE)
        bundle = _first(published, ArtifactKind.BUNDLE)
        if image is None or bundle is None:
            raise typer.BadParameter(
                f"{state} must hold a published image and bundle; run `topoforge publish` first"
            )
        return three_tier_config(image, bundle, **config.deployment_defaults())

    declared = load_deployment_config(config_path, defaults=config.deployment_defaults())
    names = {a.name for a in declared.artifacts}
    extra = [a for a in published if a.name not in names]
    return declared.model_copy(update={"artifacts": [*declared.artifacts, *extra]})


def plan_cmd(
    config_path: Path = typer.Argument(
        None, help="TOML deployment config. Uses the three-tier preset if omitted."
    ),
    name: str = typer.Option("topoforge", "--name", "-n", help="Deployment name."),
    state: Path = typer.Option(
        Path(".topoforge/artifacts.json"),
        "--state",
        "-s",
        help="State file written by `topoforge publish`.",
    ),
    output: Path = typer.Option(
        None, "--output", "-o", help="Write the assembled plan as JSON."
    ),
) -> None:
    """Assemble the deployment and print its ordered resource graph."""
    renderer = PlanRenderer(console=console)
    try:
        deployment_config = build_config(config_path, state)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config not found:[/bold red] {exc}")
        raise typer.Exit(code=1)
    except ValidationError as exc:
        console.print(f"[bold red]Invalid config:[/bold red] {exc}")
        raise typer.Exit(code=1)

    try:
        deployment = assemble(name, deployment_config)
    except TopologyInvalid as exc:
        renderer.print_violations(exc)
        raise typer.Exit(code=1)

    renderer.print_plan(deployment)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(deployment.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"[dim]Plan written to {output}[/dim]")


def read_plan(path: Path) -> Deployment:
    return Deployment.model_validate_json(path.read_bytes())
