"""
flowpulse CLI - Sync commands.

Run syncs against Linear, inspect sync status and reset the store.
"""

import logging
from collections.abc import Callable

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from flowpulse.core.config import load_config
from flowpulse.core.exceptions import FlowPulseError, SyncInProgressError
from flowpulse.core.sync.events import EventKind, SyncEvent
from flowpulse.core.sync.models import SyncResult
from flowpulse.core.sync.service import SyncService

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def open_service(require_api_key: bool = True) -> SyncService:
    """
    Build the sync service from configuration.

    Raises:
        typer.Exit: If configuration or the store cannot be loaded
    """
    try:
        return SyncService.from_config(load_config(), require_api_key=require_api_key)
    except FlowPulseError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _progress_listener(progress: Progress, task_id: int) -> Callable[[SyncEvent], None]:
    def on_event(event: SyncEvent) -> None:
        description = event.phase.value.replace("_", " ") if event.phase else "starting"
        if event.kind == EventKind.RETRY:
            progress.console.print(f"[yellow]{event.message}[/yellow]")
            return
        if event.kind == EventKind.PROGRESS and "total" in event.counts:
            description = f"{description} ({event.counts['done']}/{event.counts['total']})"
        elif event.kind == EventKind.PROGRESS and "issues" in event.counts:
            description = f"{description} ({event.counts['issues']} issues)"
        progress.update(task_id, description=description, completed=event.percent or None)

    return on_event


def print_result(result: SyncResult) -> None:
    """Summarize a sync result."""
    if result.success:
        console.print(
            f"[green]Sync complete[/green] in {result.duration_seconds:.1f}s: "
            f"{result.new_count} new, {result.updated_count} updated issues"
        )
    elif result.stopped:
        console.print("[yellow]Sync stopped.[/yellow] Run 'flowpulse sync' to resume.")
    else:
        err_console.print(f"[red]Sync failed:[/red] {result.error}")

    table = Table(show_header=False, box=None)
    table.add_column("Item", style="dim")
    table.add_column("Count", justify="right")
    table.add_row("Issues", str(result.issue_count))
    table.add_row("Projects", str(result.project_count))
    table.add_row("Engineers", str(result.engineer_count))
    table.add_row("Initiatives", str(result.initiative_count))
    table.add_row("API queries", str(result.query_count))
    console.print(table)


def sync(
    quick: bool = typer.Option(
        False,
        "--quick",
        "-q",
        help="Only sync issues and recompute metrics",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Clear a 'syncing' status left behind by an interrupted run",
    ),
) -> None:
    """
    Sync issues, projects and initiatives from Linear.

    A full sync that fails or is interrupted resumes where it stopped the
    next time it runs.

    Examples:
        flowpulse sync              # Full sync
        flowpulse sync --quick      # Issues and metrics only
        flowpulse sync --force      # Recover from a crashed sync
    """
    service = open_service()
    with service:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        ) as progress:
            task_id = progress.add_task("starting", total=100)
            unsubscribe = service.events.subscribe(_progress_listener(progress, task_id))
            try:
                result, _ = service.trigger_sync(not quick, force=force)
            except SyncInProgressError as e:
                err_console.print(f"[red]Error:[/red] {e}")
                err_console.print("[dim]Use --force if no sync is actually running.[/dim]")
                raise typer.Exit(1) from e
            finally:
                unsubscribe()

        print_result(result)
        if not result.success and not result.stopped:
            raise typer.Exit(1)


def status() -> None:
    """
    Show the sync status.

    Examples:
        flowpulse status
    """
    with open_service(require_api_key=False) as service:
        report = service.get_sync_status()

    color = {"idle": "green", "syncing": "cyan", "error": "red"}[report.status.value]
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Status", f"[{color}]{report.status.value}[/{color}]")
    table.add_row("Phase", report.current_phase.value if report.current_phase else "-")
    table.add_row(
        "Last sync",
        report.last_sync_time.strftime("%Y-%m-%d %H:%M UTC") if report.last_sync_time else "never",
    )
    if report.progress_percent is not None:
        table.add_row("Progress", f"{report.progress_percent}%")
    if report.resumable:
        table.add_row("Resumable", "yes")
    if report.query_counts:
        table.add_row("API queries", str(sum(report.query_counts.values())))
    if report.error_message:
        table.add_row("Message", report.error_message)
    if not report.schema_ok:
        table.add_row("Schema", f"[red]{report.schema_problem}[/red]")
    console.print(table)

    if not report.schema_ok:
        console.print("[dim]Run 'flowpulse reset' to rebuild the store.[/dim]")


def reset(
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt",
    ),
) -> None:
    """
    Drop and recreate every table in the store.

    All synced data and snapshot history is deleted.
    """
    if not yes and not typer.confirm("Delete all synced data and snapshots?"):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit(0)

    with open_service(require_api_key=False) as service:
        try:
            service.reset_store()
        except SyncInProgressError as e:
            err_console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e
    console.print("[green]Store reset.[/green] Run 'flowpulse sync' to repopulate it.")


def project(
    project_id: str = typer.Argument(..., help="Linear project id"),
) -> None:
    """
    Refresh a single project and recompute engineers.

    Examples:
        flowpulse project 3f1c2a9e-...
    """
    with open_service() as service:
        try:
            result = service.sync_project(project_id)
        except SyncInProgressError as e:
            err_console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from e
    print_result(result)
    if not result.success:
        raise typer.Exit(1)
