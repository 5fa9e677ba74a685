"""
flowpulse CLI - Long-running commands.

Run the HTTP control surface and the periodic sync loop.
"""

import logging
import threading

import typer
from rich.console import Console

from flowpulse.cli.sync import open_service
from flowpulse.core.config import load_config
from flowpulse.core.sync.scheduler import SyncScheduler

console = Console()
logger = logging.getLogger(__name__)


def schedule(
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        help="Minutes between syncs (default: sync.interval_minutes)",
    ),
    quick: bool = typer.Option(
        False,
        "--quick",
        "-q",
        help="Run quick syncs (issues and metrics only)",
    ),
) -> None:
    """
    Sync on a fixed interval until interrupted.

    Examples:
        flowpulse schedule               # Every 10 minutes
        flowpulse schedule -i 30 --quick
    """
    minutes = interval or load_config().sync.interval_minutes
    with open_service() as service:
        scheduler = SyncScheduler(service, minutes, full_project_sync=not quick)
        scheduler.start()
        console.print(f"[green]Syncing every {minutes:g} minute(s).[/green] Press Ctrl+C to stop.")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            console.print("\n[dim]Stopping scheduler...[/dim]")
        finally:
            scheduler.stop()


def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8080, "--port", "-p", help="Port to run the server on"),
    with_schedule: bool = typer.Option(
        False,
        "--schedule",
        help="Also run the periodic sync loop",
    ),
) -> None:
    """
    Start the HTTP API.

    Examples:
        flowpulse serve                   # http://127.0.0.1:8080
        flowpulse serve --port 3000 --schedule
    """
    import uvicorn

    from flowpulse.api.app import app as fastapi_app
    from flowpulse.api.deps import set_service

    service = open_service()
    set_service(service)
    scheduler: SyncScheduler | None = None
    if with_schedule:
        scheduler = SyncScheduler(service, load_config().sync.interval_minutes)
        scheduler.start()

    console.print(f"[green]Serving flowpulse API on http://{host}:{port}[/green]")
    try:
        uvicorn.run(fastapi_app, host=host, port=port, log_level="info")
    finally:
        if scheduler is not None:
            scheduler.stop()
        set_service(None)
        service.close()
