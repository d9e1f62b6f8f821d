"""
The migration contract.

A ``Migration`` is the unit of work the runner schedules. Directory
migrations are turned into ``Migration`` objects once, at discovery time,
whether they are written as module-level functions or as a
``BaseMigration`` subclass.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from docmigrate.log.logging import logger
from docmigrate.migrations.models import MigrationContext, MigrationResult

MigrationStep = Callable[[MigrationContext], Awaitable[MigrationResult]]
MigrationCheck = Callable[[MigrationContext], Awaitable[bool]]

T = TypeVar("T")


@dataclass
class Migration:
    """
    Represents a database migration.

    Attributes:
        id: Sequence number and snake_case description, e.g. "001_add_timezone".
        description: Human-readable description of what the migration does.
        author: Who wrote the migration.
        created_at: Creation date, YYYY-MM-DD.
        up: Async function applying the migration.
        down: Async function reverting the migration.
        validate: Optional async function checking that up() had the intended effect.
        checksum: SHA256 hash of the migration file for change detection.
        file_path: Path to the migration file, empty for in-code migrations.
    """

    id: str
    description: str
    author: str
    created_at: str
    up: Optional[MigrationStep]
    down: Optional[MigrationStep]
    validate: Optional[MigrationCheck] = None
    checksum: str = ""
    file_path: str = ""

    @property
    def sequence(self) -> Optional[int]:
        prefix = self.id[:3] if self.id else ""
        return int(prefix) if prefix.isdigit() else None

    async def run_validate(self, ctx: MigrationContext) -> bool:
        """Run validate(), treating a missing one as always valid."""
        if self.validate is None:
            return True
        return await self.validate(ctx)


class BaseMigration(ABC):
    """
    Base class for class-style migrations.

    Subclasses set the metadata attributes and implement up() and down().
    Expose an instance as ``migration`` in the migration module.
    """

    id: str = ""
    description: str = ""
    author: str = ""
    created_at: str = ""

    @abstractmethod
    async def up(self, ctx: MigrationContext) -> MigrationResult:
        """Apply the migration."""

    @abstractmethod
    async def down(self, ctx: MigrationContext) -> MigrationResult:
        """Revert the migration."""

    async def validate(self, ctx: MigrationContext) -> bool:
        return True

    def log_info(self, message: str, **context: Any) -> None:
        logger.info("[{migration_id}] {text}", migration_id=self.id, text=message, **context)

    def log_error(self, message: str, **context: Any) -> None:
        logger.error("[{migration_id}] {text}", migration_id=self.id, text=message, **context)

    async def measure_time(self, operation: Callable[[], Awaitable[T]]) -> tuple[T, int]:
        """Await operation() and return its result with elapsed milliseconds."""
        start_time = time.time()
        result = await operation()
        return result, int((time.time() - start_time) * 1000)

    def to_migration(self, checksum: str = "", file_path: str = "") -> Migration:
        return Migration(
            id=self.id,
            description=self.description,
            author=self.author,
            created_at=self.created_at,
            up=self.up,
            down=self.down,
            validate=self.validate,
            checksum=checksum,
            file_path=file_path,
        )
