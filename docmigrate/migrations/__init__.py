"""
MongoDB Migration System.

This module provides a versioned migration framework for managing schema changes,
index creation, and data transformations in MongoDB.
"""

from docmigrate.migrations.base import BaseMigration, Migration
from docmigrate.migrations.models import (
    Direction,
    MigrationContext,
    MigrationResult,
    MigrationRunOptions,
    MigrationRunResult,
    MigrationStatus,
)
from docmigrate.migrations.operations import MigrationOperations
from docmigrate.migrations.repository import (
    DirectoryMigrationRepository,
    StaticMigrationRepository,
)
from docmigrate.migrations.runner import MigrationRunner

__all__ = [
    "BaseMigration",
    "Direction",
    "DirectoryMigrationRepository",
    "Migration",
    "MigrationContext",
    "MigrationOperations",
    "MigrationResult",
    "MigrationRunOptions",
    "MigrationRunResult",
    "MigrationRunner",
    "MigrationStatus",
    "StaticMigrationRepository",
]
