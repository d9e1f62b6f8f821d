"""CLI entry point for the migration engine."""

from typing import Annotated

import typer
from rich.console import Console

from docmigrate import __version__
from docmigrate.cli.commands.migrate import migrate_app

# Create main app
app = typer.Typer(
    name="docmigrate",
    help="Versioned, auditable MongoDB migrations",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register sub-commands
app.add_typer(migrate_app, name="migrate", help="Database migration commands")

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"docmigrate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """
    docmigrate CLI.

    [bold]Quick Start:[/bold]

        # Apply pending migrations
        docmigrate migrate up

        # Show status
        docmigrate migrate status

        # Roll back the last migration
        docmigrate migrate down

        # Create a migration file
        docmigrate migrate create "add timezone to users"

    [bold]Environment Variables:[/bold]

        MONGODB             - MongoDB connection URI
        MONGODB_DATABASE    - Target database
        MIGRATIONS_DIR      - Directory holding migration files
        ENVIRONMENT         - Environment name (production blocks resets)
    """


if __name__ == "__main__":
    app()
