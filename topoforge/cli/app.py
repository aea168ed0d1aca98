"""Main Typer application — imports and registers all CLI commands.

Entry point: ``topoforge`` (configured via pyproject.toml scripts).

Commands: fingerprint, publish, plan, route.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from topoforge.cli.commands.fingerprint_cmd import fingerprint_cmd
from topoforge.cli.commands.plan import plan_cmd
from topoforge.cli.commands.publish import publish_cmd
from topoforge.cli.commands.route import route_cmd
from topoforge.config import config

app = typer.Typer(
    name="topoforge",
    help="Topoforge: declarative resource-topology compiler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="fingerprint", help="Compute the content fingerprint of a build input.")(
    fingerprint_cmd
)
app.command(name="publish", help="Publish an image and a static bundle.")(publish_cmd)
app.command(name="plan", help="Assemble a deployment and show its resource graph.")(plan_cmd)
app.command(name="route", help="Resolve a request path against a saved plan.")(route_cmd)


def configure_logging(level: str) -> None:
    """Route all topoforge logging through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        config.log_level, "--log-level", "-L", help="Logging level (DEBUG, INFO, ...)."
    ),
) -> None:
    configure_logging("DEBUG" if config.debug else log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
