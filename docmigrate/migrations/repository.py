"""
Migration repositories: where migrations are discovered from.

``DirectoryMigrationRepository`` loads ``NNN_description.py`` files.
``StaticMigrationRepository`` holds migrations registered in code.
"""

import hashlib
import importlib.util
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from types import ModuleType
from typing import Optional

from docmigrate.core.config import settings
from docmigrate.log.logging import logger
from docmigrate.migrations.base import BaseMigration, Migration
from docmigrate.migrations.exceptions import MigrationLoadError

SEQUENCE_PATTERN = re.compile(r"^(\d{3})_")


def sequence_number(name: str) -> Optional[int]:
    """Leading 3-digit sequence number of a migration name, or None."""
    match = SEQUENCE_PATTERN.match(name)
    return int(match.group(1)) if match else None


class MigrationRepository(ABC):
    """A discoverable set of migrations."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Where the migrations live, for messages."""

    @abstractmethod
    def list_names(self) -> list[str]:
        """Names of the candidate migration sources, in repository order."""

    @abstractmethod
    def load(self, name: str) -> Migration:
        """
        Load one migration by name.

        Raises:
            MigrationLoadError: If the source cannot be turned into a Migration.
        """


class DirectoryMigrationRepository(MigrationRepository):
    """
    Migrations stored as Python files in a directory.

    A migration file defines, at module level, ``description``, ``author``,
    ``created_at``, ``async def up(ctx)``, ``async def down(ctx)`` and
    optionally ``async def validate(ctx)`` and ``migration_id`` (defaults
    to the file stem). Alternatively it exposes ``migration``, an instance
    of a ``BaseMigration`` subclass.
    """

    def __init__(self, migrations_dir: Optional[str] = None):
        self._migrations_dir = migrations_dir or settings.migrations_dir

    @property
    def location(self) -> str:
        return self._migrations_dir

    def exists(self) -> bool:
        return os.path.isdir(self._migrations_dir)

    def list_names(self) -> list[str]:
        if not self.exists():
            return []

        return sorted(
            filename
            for filename in os.listdir(self._migrations_dir)
            if filename.endswith(".py") and not filename.startswith(("_", "."))
        )

    def path_for(self, name: str) -> str:
        return os.path.join(self._migrations_dir, name)

    def load(self, name: str) -> Migration:
        return load_migration_file(self.path_for(name))


class StaticMigrationRepository(MigrationRepository):
    """
    Migrations registered in code, in the order given.

    Usage:
        repository = StaticMigrationRepository([
            Migration(id="001_add_timezone", ...),
            AddIndexMigration(),
        ])
    """

    def __init__(self, migrations: list[Migration | BaseMigration]):
        self._migrations: dict[str, Migration] = {}
        for item in migrations:
            migration = item.to_migration() if isinstance(item, BaseMigration) else item
            self._migrations[migration.id] = migration

    @property
    def location(self) -> str:
        return "<static registry>"

    def list_names(self) -> list[str]:
        return list(self._migrations)

    def load(self, name: str) -> Migration:
        try:
            return self._migrations[name]
        except KeyError:
            raise MigrationLoadError(f"Migration {name} is not registered") from None


def calculate_checksum(file_path: str) -> str:
    """Calculate SHA256 checksum of a file."""
    with open(file_path, "rb") as f:
        return hashlib.sha256(f.read()).hexdigest()


def import_migration_module(file_path: str) -> ModuleType:
    """
    Execute a migration file as a fresh module.

    Raises:
        MigrationLoadError: If the file is missing or fails to import.
    """
    if not os.path.isfile(file_path):
        raise MigrationLoadError(f"Migration file does not exist: {file_path}")

    stem = Path(file_path).stem
    spec = importlib.util.spec_from_file_location(f"docmigrate_migration_{stem}", file_path)
    if spec is None or spec.loader is None:
        raise MigrationLoadError(f"Cannot load migration file: {file_path}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise MigrationLoadError(f"Cannot load migration file {file_path}: {e}") from e

    return module


def load_migration_file(file_path: str) -> Migration:
    """
    Load a migration from a Python file.

    Metadata is read as-is; missing values are left empty so the validator
    can report them.
    """
    module = import_migration_module(file_path)
    checksum = calculate_checksum(file_path)

    instance = getattr(module, "migration", None)
    if isinstance(instance, BaseMigration):
        migration = instance.to_migration(checksum=checksum, file_path=file_path)
    else:
        migration = Migration(
            id=getattr(module, "migration_id", Path(file_path).stem),
            description=getattr(module, "description", ""),
            author=getattr(module, "author", ""),
            created_at=getattr(module, "created_at", ""),
            up=getattr(module, "up", None),
            down=getattr(module, "down", None),
            validate=getattr(module, "validate", None),
            checksum=checksum,
            file_path=file_path,
        )

    logger.debug(
        "Loaded migration {migration_id}",
        event_type="migration_loaded",
        migration_id=migration.id,
        file_path=file_path,
    )
    return migration
