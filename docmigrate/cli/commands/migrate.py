"""
Migration CLI commands for managing database migrations.
"""

import asyncio
import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer
from rich.table import Table

from docmigrate.cli.output import (
    console,
    print_error,
    print_info,
    print_run_result,
    print_status,
    print_success,
    print_warning,
)
from docmigrate.core.config import settings
from docmigrate.migrations.models import BackupOptions, Direction, MigrationRunOptions

migrate_app = typer.Typer(name="migrate", help="Database migration commands")

T = TypeVar("T")

MigrationsDirOption = Annotated[
    Optional[str],
    typer.Option("--dir", "-d", envvar="MIGRATIONS_DIR", help="Migrations directory"),
]
OnlyOption = Annotated[
    Optional[str],
    typer.Option("--only", "-o", help="Run only this migration id"),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", "-n", help="Validate without applying"),
]


def get_runner(migrations_dir: Optional[str] = None):
    """Get migration runner instance bound to the configured database."""
    from docmigrate.core.database import db_manager
    from docmigrate.migrations.runner import MigrationRunner

    ctx = db_manager.build_context()
    return MigrationRunner(
        ctx.db,
        ctx.client,
        repository=migrations_dir or settings.migrations_dir,
    )


def run_async(operation: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine and close the database connection afterwards."""
    from docmigrate.core.database import db_manager

    async def _wrapped() -> T:
        try:
            return await operation()
        finally:
            await db_manager.close()

    return asyncio.run(_wrapped())


def _run(options: MigrationRunOptions, migrations_dir: Optional[str]) -> None:
    if options.dry_run:
        console.print("[yellow]DRY RUN - No changes will be made[/yellow]")

    async def _go():
        return await get_runner(migrations_dir).run_migrations(options)

    try:
        result = run_async(_go)
    except Exception as e:
        print_error(f"Migration failed: {e}")
        raise typer.Exit(1)

    print_run_result(result, dry_run=options.dry_run)
    if not result.success:
        raise typer.Exit(1)


@migrate_app.callback(invoke_without_command=True)
def default(ctx: typer.Context, migrations_dir: MigrationsDirOption = None):
    """Run pending migrations when no command is given."""
    if ctx.invoked_subcommand is None:
        _run(MigrationRunOptions(), migrations_dir)


@migrate_app.command("up")
def up(
    only: OnlyOption = None,
    dry_run: DryRunOption = False,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Continue despite safety blockers")
    ] = False,
    validate: Annotated[
        bool, typer.Option("--validate", help="Run each migration's validate() after applying")
    ] = False,
    backup: Annotated[
        bool, typer.Option("--backup", help="Back up the database before applying")
    ] = False,
    migrations_dir: MigrationsDirOption = None,
):
    """Apply pending migrations."""
    _run(
        MigrationRunOptions(
            direction=Direction.UP,
            target=only,
            dry_run=dry_run,
            force=force,
            validate=validate,
            backup=backup,
        ),
        migrations_dir,
    )


@migrate_app.command("down")
def down(
    only: OnlyOption = None,
    dry_run: DryRunOption = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation and continue despite safety blockers"),
    ] = False,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Confirm the rollback without prompting")
    ] = False,
    backup: Annotated[
        bool, typer.Option("--backup", help="Back up the database before rolling back")
    ] = False,
    migrations_dir: MigrationsDirOption = None,
):
    """Roll back the most recently applied migration."""

    confirmed = yes or force
    if not confirmed and not dry_run:
        confirmed = typer.confirm(
            "Are you sure you want to rollback the last migration? This may cause data loss."
        )
        if not confirmed:
            print_warning("Rollback cancelled.")
            raise typer.Exit(0)

    _run(
        MigrationRunOptions(
            direction=Direction.DOWN,
            target=only,
            dry_run=dry_run,
            confirm=confirmed,
            force=force,
            backup=backup,
        ),
        migrations_dir,
    )


@migrate_app.command("status")
def status(migrations_dir: MigrationsDirOption = None):
    """Show current migration status."""

    async def _status():
        return await get_runner(migrations_dir).get_status()

    try:
        result = run_async(_status)
    except Exception as e:
        print_error(f"Failed to get migration status: {e}")
        raise typer.Exit(1)

    print_status(result)


@migrate_app.command("validate")
def validate(
    applied: Annotated[
        bool,
        typer.Option("--applied", help="Also run validate() of applied migrations against the database"),
    ] = False,
    migrations_dir: MigrationsDirOption = None,
):
    """Validate migration files and metadata without applying anything."""

    async def _validate():
        return await get_runner(migrations_dir).validate_migrations(check_applied=applied)

    try:
        result = run_async(_validate)
    except Exception as e:
        print_error(f"Validation failed: {e}")
        raise typer.Exit(1)

    for warning in result.warnings:
        print_warning(warning)

    if not result.valid:
        print_error("Migration validation failed!")
        for error in result.errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)

    print_success("All migrations validated successfully!")


@migrate_app.command("reset")
def reset(
    confirm: Annotated[
        bool, typer.Option("--confirm", help="Confirm deleting all migration records")
    ] = False,
    migrations_dir: MigrationsDirOption = None,
):
    """Delete all migration tracking records (never allowed in production)."""
    if settings.is_production:
        print_error("Reset is not allowed in production environment!")
        raise typer.Exit(1)

    if not confirm:
        print_warning("Reset requires confirmation. Use --confirm to proceed.")
        print_warning("This deletes all migration tracking records.")
        raise typer.Exit(1)

    async def _reset():
        return await get_runner(migrations_dir).reset()

    try:
        deleted = run_async(_reset)
    except Exception as e:
        print_error(f"Reset failed: {e}")
        raise typer.Exit(1)

    print_success(f"Cleared {deleted} migration record(s)")
    print_info("Collections touched by migrations were not modified")


def sanitize_description(description: str) -> str:
    """Turn free text into the snake_case part of a migration id."""
    cleaned = re.sub(r"[^a-z0-9\s_]", "", description.lower())
    return re.sub(r"[\s_]+", "_", cleaned).strip("_")[:50]


MIGRATION_TEMPLATE = '''"""
Migration: {summary}
Created: {created_at}
"""

from docmigrate.migrations import MigrationContext, MigrationResult

# Metadata
migration_id = "{migration_id}"
description = {description}
author = {author}
created_at = "{created_at}"


async def up(ctx: MigrationContext) -> MigrationResult:
    """Apply migration."""
    # e.g. return await ctx.operations.add_field("users", "timezone", "UTC")
    return MigrationResult(success=True, documents_affected=0, message="Nothing to do")


async def down(ctx: MigrationContext) -> MigrationResult:
    """Rollback migration."""
    # e.g. return await ctx.operations.remove_field("users", "timezone")
    return MigrationResult(success=True, documents_affected=0, message="Nothing to undo")
'''


@migrate_app.command("create")
def create(
    description: Annotated[str, typer.Argument(help="What the migration does")],
    author: Annotated[
        Optional[str], typer.Option("--author", "-a", help="Migration author")
    ] = None,
    migrations_dir: MigrationsDirOption = None,
):
    """Create a new migration file."""
    from docmigrate.migrations.validator import MigrationValidator

    name = sanitize_description(description)
    if not name:
        print_error("Migration description must contain letters or digits")
        raise typer.Exit(1)

    directory = Path(migrations_dir or settings.migrations_dir)
    directory.mkdir(parents=True, exist_ok=True)

    number = MigrationValidator().get_next_migration_number(str(directory))
    migration_id = f"{number}_{name}"
    file_path = directory / f"{migration_id}.py"

    if file_path.exists():
        print_error(f"Migration file already exists: {file_path}")
        raise typer.Exit(1)

    file_path.write_text(
        MIGRATION_TEMPLATE.format(
            migration_id=migration_id,
            summary=description.strip().replace("\\", "/").replace('"', "'"),
            description=json.dumps(description.strip()),
            author=json.dumps(author or os.getenv("USER") or os.getenv("USERNAME") or "developer"),
            created_at=datetime.now().strftime("%Y-%m-%d"),
        )
    )

    print_success(f"Created migration file: {file_path}")
    console.print(f"  Dry run it with: [dim]docmigrate migrate up --dry-run --only {migration_id}[/dim]")


@migrate_app.command("verify")
def verify(migrations_dir: MigrationsDirOption = None):
    """Verify migration checksums to detect modified files."""

    async def _verify():
        return await get_runner(migrations_dir).verify_checksums()

    try:
        mismatches = run_async(_verify)
    except Exception as e:
        print_error(f"Verification failed: {e}")
        raise typer.Exit(1)

    if not mismatches:
        print_success("All migration checksums are valid.")
        return

    table = Table(title="Checksum Mismatches", show_header=True)
    table.add_column("ID", style="red")
    table.add_column("Status", style="red")
    for mismatch in mismatches:
        table.add_row(mismatch["migration_id"], "MODIFIED")

    console.print(table)
    print_warning("Modifying applied migrations can cause inconsistencies.")
    raise typer.Exit(1)


@migrate_app.command("backup")
def backup(
    output_dir: Annotated[
        Optional[str], typer.Option("--out", help="Directory to write the backup into")
    ] = None,
    include: Annotated[
        Optional[list[str]], typer.Option("--include", help="Only back up this collection")
    ] = None,
    exclude: Annotated[
        Optional[list[str]], typer.Option("--exclude", help="Skip this collection")
    ] = None,
):
    """Back up the database with mongodump."""
    options = BackupOptions(
        output_dir=output_dir,
        include_collections=include or [],
        exclude_collections=exclude or [],
    )

    async def _backup():
        return await get_runner().safety.create_backup(options)

    result = run_async(_backup)
    if not result.success:
        print_error(f"Backup failed: {result.error}")
        raise typer.Exit(1)

    print_success(f"Backup created: {result.backup_path}")
    _print_size_and_collections(result.size or 0, result.collections)


@migrate_app.command("restore")
def restore(
    backup_path: Annotated[str, typer.Argument(help="Backup directory to restore")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
):
    """Restore the database from a backup, dropping existing collections."""
    if not yes and not typer.confirm(
        "Restoring drops existing collections before loading the backup. Continue?"
    ):
        print_warning("Restore cancelled.")
        raise typer.Exit(0)

    async def _restore():
        return await get_runner().safety.restore_from_backup(backup_path)

    result = run_async(_restore)
    if not result.success:
        print_error(f"Restore failed: {result.error}")
        raise typer.Exit(1)

    print_success(f"Restored backup: {result.backup_path}")


@migrate_app.command("verify-backup")
def verify_backup(
    backup_path: Annotated[str, typer.Argument(help="Backup directory to check")],
):
    """Check a backup directory for missing or empty collection files."""

    async def _verify():
        return await get_runner().safety.verify_backup(backup_path)

    result = run_async(_verify)
    if not result.valid:
        print_error("Backup verification failed")
        for error in result.errors:
            console.print(f"  • {error}")
        raise typer.Exit(1)

    print_success(f"Backup is valid: {result.collections} collection(s), {result.total_size} bytes")


def _print_size_and_collections(size: int, collections: list[str]) -> None:
    from docmigrate.migrations.safety import format_bytes

    print_info(f"Size: {format_bytes(size)}")
    if collections:
        print_info(f"Collections: {', '.join(collections)}")
