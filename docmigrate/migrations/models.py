"""
Migration data models and status tracking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

if TYPE_CHECKING:
    from docmigrate.migrations.operations import MigrationOperations


class MigrationStatus(str, Enum):
    """Status of a migration record."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Direction(str, Enum):
    """Direction of a migration run."""

    UP = "up"
    DOWN = "down"


@dataclass
class MigrationContext:
    """
    Handle passed to a migration's up/down/validate.

    Attributes:
        db: Target database.
        client: Client owning the database, used for sessions and transactions.
    """

    db: AsyncIOMotorDatabase
    client: AsyncIOMotorClient

    @property
    def operations(self) -> "MigrationOperations":
        from docmigrate.migrations.operations import MigrationOperations

        return MigrationOperations(self.db, self.client)


@dataclass
class MigrationResult:
    """
    Outcome of a single up/down invocation or operation primitive.

    Attributes:
        success: Whether the operation succeeded.
        documents_affected: Number of documents changed, if applicable.
        message: Human-readable summary.
        execution_time: Elapsed time in milliseconds.
        error: Error message when success is False.
        skipped: Per-document failures that were skipped, as "<_id>: <reason>".
        index_name: Name of the index created by create_index.
        rollback_info: Data an up() wants stored on its record for a later rollback.
    """

    success: bool
    documents_affected: Optional[int] = None
    message: str = ""
    execution_time: int = 0
    error: Optional[str] = None
    skipped: list[str] = field(default_factory=list)
    index_name: Optional[str] = None
    rollback_info: Any = None

    @classmethod
    def failure(cls, error: str, execution_time: int = 0) -> "MigrationResult":
        return cls(success=False, error=error, execution_time=execution_time)


@dataclass
class MigrationRecord:
    """
    Record of a migration stored in the tracking collection.

    Attributes:
        migration_id: Migration id, unique in the collection.
        description: Migration description.
        applied_at: When the migration last changed state.
        author: Migration author.
        environment: Environment the migration ran in.
        status: Current status of the migration.
        execution_time: How long the last up() took, in milliseconds.
        documents_affected: Documents changed by the last up().
        rollback_info: Free-form data a migration can store for its rollback.
        error: Error message if the migration failed.
        checksum: Hash of the migration source when it was started.
    """

    migration_id: str
    description: str
    applied_at: datetime
    author: str
    environment: str
    status: MigrationStatus
    execution_time: Optional[int] = None
    documents_affected: Optional[int] = None
    rollback_info: Any = None
    error: Optional[str] = None
    checksum: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage."""
        return {
            "migration_id": self.migration_id,
            "description": self.description,
            "applied_at": self.applied_at,
            "author": self.author,
            "environment": self.environment,
            "status": self.status.value,
            "execution_time": self.execution_time,
            "documents_affected": self.documents_affected,
            "rollback_info": self.rollback_info,
            "error": self.error,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MigrationRecord":
        """Create from MongoDB document."""
        return cls(
            migration_id=data["migration_id"],
            description=data.get("description", ""),
            applied_at=data["applied_at"],
            author=data.get("author", ""),
            environment=data.get("environment", ""),
            status=MigrationStatus(data["status"]),
            execution_time=data.get("execution_time"),
            documents_affected=data.get("documents_affected"),
            rollback_info=data.get("rollback_info"),
            error=data.get("error"),
            checksum=data.get("checksum", ""),
        )


@dataclass
class ValidationResult:
    """Structural fitness of a migration or of the migration sequence."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_lists(cls, errors: list[str], warnings: list[str]) -> "ValidationResult":
        return cls(valid=not errors, errors=errors, warnings=warnings)


@dataclass
class SafetyCheckResult:
    """Environmental fitness to run. Blockers halt a run, warnings never do."""

    safe: bool
    warnings: list[str]
    blockers: list[str]
    environment: str
    disk_space: Optional[float] = None
    collection_sizes: Optional[dict[str, int]] = None


@dataclass
class BackupOptions:
    """Options for creating a backup."""

    output_dir: Optional[str] = None
    include_collections: list[str] = field(default_factory=list)
    exclude_collections: list[str] = field(default_factory=list)


@dataclass
class BackupResult:
    """Outcome of a backup or restore attempt."""

    success: bool
    timestamp: datetime
    backup_path: Optional[str] = None
    size: Optional[int] = None
    collections: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BackupVerification:
    """Integrity report for a backup directory."""

    valid: bool
    collections: int
    total_size: int
    errors: list[str] = field(default_factory=list)


@dataclass
class MigrationRunOptions:
    """
    Options for a migration run.

    Attributes:
        direction: "up" applies pending migrations, "down" rolls back the last one.
        target: Run only this migration id, regardless of direction.
        dry_run: Validate candidates without invoking up/down or touching the tracker.
        validate: Run each migration's validate() after a successful up().
        confirm: The operator confirmed a destructive run (needed in production).
        force: Downgrade safety blockers to warnings; implies confirm.
        backup: Create a backup before executing.
    """

    direction: Direction = Direction.UP
    target: Optional[str] = None
    dry_run: bool = False
    validate: bool = False
    confirm: bool = False
    force: bool = False
    backup: bool = False


@dataclass
class MigrationRunResult:
    """Aggregated outcome of one runner invocation."""

    success: bool = True
    migrations_run: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    total_time: int = 0
    backup_path: Optional[str] = None

    def fail(self, error: str) -> "MigrationRunResult":
        self.success = False
        self.errors.append(error)
        return self

    def raise_for_errors(self) -> None:
        """Raise MigrationExecutionError if the run did not succeed."""
        if not self.success:
            from docmigrate.migrations.exceptions import MigrationExecutionError

            raise MigrationExecutionError("; ".join(self.errors) or "Migration run failed")


@dataclass
class MigrationLockInfo:
    """
    Lock document preventing concurrent migration runs.

    Attributes:
        locked_at: When the lock was acquired.
        locked_by: Identifier of the process holding the lock.
        expires_at: When the lock expires.
    """

    locked_at: datetime
    locked_by: str
    expires_at: datetime

    def to_dict(self) -> dict:
        """Fields written to the lock document (the _id is fixed)."""
        return {
            "locked_at": self.locked_at,
            "locked_by": self.locked_by,
            "expires_at": self.expires_at,
        }
