"""Rich terminal renderer for assembled plans.

Color scheme
------------
- cyan      : resource ids
- green     : placement routes and valid plans
- blue      : bundle routes
- yellow    : objects served with a fallback content type
- bold red  : violations
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from topoforge.models.routing import TargetKind

if TYPE_CHECKING:
    from topoforge.core.assembler import TopologyInvalid
    from topoforge.models.deployment import Deployment
    from topoforge.models.routing import Route


# ---------------------------------------------------------------------------
# Target kind -> Rich style mapping
# ---------------------------------------------------------------------------

_KIND_STYLES: dict[TargetKind, str] = {
    TargetKind.PLACEMENT: "green",
    TargetKind.BUNDLE: "blue",
}


class PlanRenderer:
    """Renders ``Deployment`` plans as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Plan render
    # ------------------------------------------------------------------

    def render_plan(self, deployment: Deployment) -> Panel:
        """Render the ordered resource graph, routes and summary as a Panel."""
        summary_parts: list[str] = [
            f"[bold]Domain:[/bold] {deployment.domain}",
            f"[bold]Resources:[/bold] {len(deployment.resources)}",
            f"[bold]Placements:[/bold] {len(deployment.placements)}",
            f"[bold]Change:[/bold] {deployment.change_fingerprint[:19]}",
        ]
        fallbacks = [
            f"{a.name}/{o.key}"
            for a in deployment.artifacts
            for o in a.objects
            if o.content_type_fallback
        ]
        if fallbacks:
            summary_parts.append(
                f"[yellow][bold]Fallback types:[/bold] {len(fallbacks)}[/yellow]"
            )
        summary = "  |  ".join(summary_parts)

        content = Group(
            self._build_resource_table(deployment),
            Text(""),
            self._build_route_table(deployment),
            Text(""),
            Text.from_markup(summary),
        )
        return Panel(
            content,
            title=f"[bold]Plan: {deployment.name}[/bold]",
            border_style="green",
        )

    def _build_resource_table(self, deployment: Deployment) -> Table:
        table = Table(title="Resources (apply order)", expand=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Resource", style="cyan")
        table.add_column("Kind")
        table.add_column("Depends on", style="dim")
        for position, node in enumerate(deployment.resources, start=1):
            table.add_row(
                str(position),
                node.resource_id,
                node.kind,
                ", ".join(node.depends_on) or "-",
            )
        return table

    def _build_route_table(self, deployment: Deployment) -> Table:
        table = Table(title="Routes (evaluation order)", expand=True)
        table.add_column("Path", style="bold")
        table.add_column("Target")
        table.add_column("Priority", justify="right")
        table.add_column("Cache TTL (min/default/max)", justify="right")
        for route in deployment.routes:
            policy = route.cache_policy
            style = _KIND_STYLES.get(route.target_kind, "")
            table.add_row(
                route.path_pattern,
                f"[{style}]{route.target}[/{style}] ({route.target_kind.value})",
                str(route.priority),
                f"{policy.min_ttl}/{policy.default_ttl}/{policy.max_ttl}",
            )
        return table

    def render_violations(self, error: TopologyInvalid) -> Panel:
        lines = [f"[bold red]x[/bold red] {escape(v)}" for v in error.violations]
        return Panel(
            Text.from_markup("\n".join(lines)),
            title=f"[bold red]{error.deployment}: {len(error.violations)} violation(s)[/bold red]",
            border_style="red",
        )

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_plan(self, deployment: Deployment) -> None:
        self.console.print(self.render_plan(deployment))

    def print_violations(self, error: TopologyInvalid) -> None:
        self.console.print(self.render_violations(error))

    def print_route(self, path: str, route: Route, address: str) -> None:
        """Print which route serves ``path`` and where it goes."""
        style = _KIND_STYLES.get(route.target_kind, "")
        self.console.print(
            f"[bold]{path}[/bold] -> [{style}]{route.target}[/{style}] "
            f"({route.target_kind.value}) via {route.path_pattern} at {address}"
        )
