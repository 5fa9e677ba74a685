"""
flowpulse CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer
from rich.console import Console

from flowpulse import __version__
from flowpulse.cli import serve, snapshot, sync
from flowpulse.core.config.env import load_layered_env

PANEL_SYNC = "Sync"
PANEL_METRICS = "Metrics"
PANEL_RUN = "Run Continuously"

app = typer.Typer(
    name="flowpulse",
    help="Sync Linear into a local store and track workflow health",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    flowpulse - workflow health from Linear.

    Quick Start:
        1. export LINEAR_API_KEY=lin_api_...
        2. flowpulse sync            # Pull issues, projects, initiatives
        3. flowpulse status          # Check the result
        4. flowpulse trends          # Week and month trends
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()

    if debug:
        logging.basicConfig(level=logging.DEBUG)
        console.print("[dim]Debug mode enabled[/dim]")

    ctx.obj = {"debug": debug}


app.command(name="sync", rich_help_panel=PANEL_SYNC)(sync.sync)
app.command(name="status", rich_help_panel=PANEL_SYNC)(sync.status)
app.command(name="reset", rich_help_panel=PANEL_SYNC)(sync.reset)
app.command(name="project", rich_help_panel=PANEL_SYNC)(sync.project)

app.command(name="snapshot", rich_help_panel=PANEL_METRICS)(snapshot.snapshot)
app.command(name="trends", rich_help_panel=PANEL_METRICS)(snapshot.trends)

app.command(name="schedule", rich_help_panel=PANEL_RUN)(serve.schedule)
app.command(name="serve", rich_help_panel=PANEL_RUN)(serve.serve)


@app.command()
def version() -> None:
    """Show the flowpulse version."""
    console.print(f"flowpulse version {__version__}")


def cli_main() -> None:
    """Entry point for the flowpulse console script."""
    app()


__all__ = ["app", "cli_main"]
