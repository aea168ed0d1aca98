"""``topoforge route PATH`` — resolve a request path against a saved plan."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from topoforge.cli.commands.plan import read_plan
from topoforge.core.assembler import route_for, target_address
from topoforge.render.renderer import PlanRenderer

console = Console()


def route_cmd(
    path: str = typer.Argument(..., help="Request path, e.g. /backend/users."),
    plan: Path = typer.Option(
        Path(".topoforge/plan.json"),
        "--plan",
        "-p",
        help="Plan written by `topoforge plan --output`.",
    ),
) -> None:
    """Show which route serves PATH and the address it forwards to."""
    if not plan.exists():
        console.print(f"[bold red]Plan not found:[/bold red] {plan}")
        raise typer.Exit(code=1)
    deployment = read_plan(plan)
    route = route_for(deployment, path)
    PlanRenderer(console=console).print_route(path, route, target_address(deployment, route))
