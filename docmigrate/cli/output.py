"""Output formatting utilities for CLI."""

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from docmigrate.migrations.models import MigrationRecord, MigrationRunResult

console = Console()
error_console = Console(stderr=True)


def format_timestamp(ts: str | datetime | None) -> str:
    """Format a timestamp for display."""
    if ts is None:
        return "-"
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def format_status(status: str) -> Text:
    """Format migration status with color."""
    colors = {
        "pending": "yellow",
        "running": "blue",
        "completed": "green",
        "failed": "red",
        "rolled_back": "magenta",
    }
    color = colors.get(status.lower(), "white")
    return Text(status, style=color)


def print_error(message: str, details: dict | None = None) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")
    if details:
        for key, value in details.items():
            error_console.print(f"  [dim]{key}:[/dim] {value}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")


def print_run_result(result: MigrationRunResult, dry_run: bool = False) -> None:
    """Print the outcome of a migration run."""
    if result.success:
        if result.migrations_run:
            verb = "Validated" if dry_run else "Processed"
            print_success(f"{verb} {len(result.migrations_run)} migration(s):")
            for migration_id in result.migrations_run:
                console.print(f"  • [cyan]{migration_id}[/cyan]")
        else:
            print_info("No migrations to run.")
    else:
        print_error("Migration(s) failed!")
        for error in result.errors:
            error_console.print(f"  • {error}")
        if result.migrations_run:
            console.print("[green]Completed before failure:[/green]")
            for migration_id in result.migrations_run:
                console.print(f"  • [cyan]{migration_id}[/cyan]")

    for warning in result.warnings:
        print_warning(warning)

    if result.backup_path:
        print_info(f"Backup: {result.backup_path}")

    console.print(f"[dim]Total execution time: {result.total_time}ms[/dim]")


def print_status(data: dict) -> None:
    """Print migration status summary and tables."""
    status = data["status"]
    last: MigrationRecord | None = status.get("last_migration")

    summary = Text()
    summary.append(f"Total:   {status['total']}\n")
    summary.append(f"Applied: {status['applied']}\n", style="green")
    summary.append(f"Pending: {status['pending']}\n", style="yellow")
    summary.append(f"Failed:  {status['failed']}", style="red")
    if last:
        summary.append(f"\n\nLast migration: {last.migration_id} (")
        summary.append(format_status(last.status.value))
        summary.append(f") at {format_timestamp(last.applied_at)} by {last.author} [{last.environment}]")
    console.print(Panel(summary, title="Migration Status"))

    failed_ids = {r.migration_id for r in data["failed_migrations"]}
    applied_ids = set(data["applied_migrations"])

    table = Table(title="Available Migrations", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    for migration_id in data["available_migrations"]:
        if migration_id in failed_ids:
            state = "failed"
        elif migration_id in applied_ids:
            state = "completed"
        else:
            state = "pending"
        table.add_row(migration_id, format_status(state))
    console.print(table)

    if data["failed_migrations"]:
        failed = Table(title="Failed Migrations", show_header=True)
        failed.add_column("ID", style="red")
        failed.add_column("Error")
        for record in data["failed_migrations"]:
            failed.add_row(record.migration_id, record.error or "Unknown error")
        console.print(failed)

    if data["pending_migrations"]:
        print_info("Run 'docmigrate migrate up' to apply pending migrations")
