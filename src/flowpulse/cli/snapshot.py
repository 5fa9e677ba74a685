"""
flowpulse CLI - Snapshot commands.

Capture metrics snapshots by hand and show trends over them.
"""

from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

from flowpulse.core.config import load_config
from flowpulse.core.exceptions import StoreError
from flowpulse.core.snapshots.trends import Trend, TrendDirection, trends_for_level
from flowpulse.core.snapshots.writer import SnapshotWriter
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import SnapshotLevel

console = Console()
err_console = Console(stderr=True)


def _open_store() -> Store:
    config = load_config()
    try:
        return Store(config.sync.db_path).open()
    except StoreError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def snapshot() -> None:
    """
    Capture org, domain and team snapshots from the current store.

    Snapshots are captured automatically after every successful sync; use
    this to take one without syncing.
    """
    config = load_config()
    with _open_store() as store:
        if not store.schema_check.ok:
            err_console.print(f"[red]Error:[/red] schema mismatch: {store.schema_check.describe()}")
            raise typer.Exit(1)
        result = SnapshotWriter(store, config.mapping).capture_all(datetime.now(timezone.utc))
    console.print(
        f"[green]Captured {result.total} snapshot(s)[/green]: org, "
        f"{len(result.domains)} domain(s), {len(result.teams)} team(s)"
    )


def _format_trend(trend: Trend) -> str:
    if not trend.has_enough_data:
        return "[dim]not enough data[/dim]"
    arrow = {
        TrendDirection.UP: "[green]▲[/green]",
        TrendDirection.DOWN: "[red]▼[/red]",
        TrendDirection.STABLE: "[dim]■[/dim]",
    }[trend.direction]
    span = f" ({trend.actual_days}d)" if trend.actual_days else ""
    return f"{arrow} {trend.change:g}{span}"


def trends(
    level: SnapshotLevel = typer.Option(
        SnapshotLevel.ORG,
        "--level",
        "-l",
        help="Aggregation level",
    ),
    level_id: str | None = typer.Option(
        None,
        "--id",
        help="Domain name or team key (required for domain and team levels)",
    ),
) -> None:
    """
    Show week and month trends of the health pillars.

    Examples:
        flowpulse trends
        flowpulse trends --level team --id ENG
    """
    if level != SnapshotLevel.ORG and not level_id:
        err_console.print(f"[red]Error:[/red] --id is required for level '{level.value}'")
        raise typer.Exit(1)

    with _open_store() as store:
        results = trends_for_level(
            store, level, level_id if level != SnapshotLevel.ORG else None,
            datetime.now(timezone.utc),
        )

    table = Table(title=f"Trends: {level.value}{' ' + level_id if level_id else ''}")
    table.add_column("Metric")
    table.add_column("Week")
    table.add_column("Month")
    for name, metric in results.items():
        table.add_row(name.replace("_", " "), _format_trend(metric.week), _format_trend(metric.month))
    console.print(table)
