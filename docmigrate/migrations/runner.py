"""
Migration runner for executing database migrations.
"""

import asyncio
import time
from contextlib import suppress
from typing import Any, Optional, Union

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from docmigrate.log.logging import logger
from docmigrate.migrations.base import Migration
from docmigrate.migrations.exceptions import MigrationLoadError, MigrationValidationError
from docmigrate.migrations.lock import MigrationLock
from docmigrate.migrations.models import (
    Direction,
    MigrationContext,
    MigrationResult,
    MigrationRunOptions,
    MigrationRunResult,
    MigrationStatus,
    ValidationResult,
)
from docmigrate.migrations.repository import (
    DirectoryMigrationRepository,
    MigrationRepository,
    sequence_number,
)
from docmigrate.migrations.safety import MigrationSafety
from docmigrate.migrations.tracker import MigrationTracker
from docmigrate.migrations.validator import MigrationValidator


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


class MigrationRunner:
    """
    Manages and executes database migrations.

    A run goes through: validate the migration files, load and validate
    each migration, pick the candidates (pending ones for "up", the most
    recently applied one for "down", or a single target), run safety checks,
    take the lock, then execute candidates one at a time. The first failure
    halts the run; migrations completed earlier in the run stay completed.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: AsyncIOMotorClient,
        repository: Union[MigrationRepository, str, None] = None,
        tracker: Optional[MigrationTracker] = None,
        validator: Optional[MigrationValidator] = None,
        safety: Optional[MigrationSafety] = None,
        lock: Optional[MigrationLock] = None,
    ):
        """
        Initialize the migration runner.

        Args:
            db: MongoDB database instance.
            client: Client owning db.
            repository: Migration repository or a migrations directory path.
            tracker: Tracker for migration records.
            validator: Validator for metadata and sequencing.
            safety: Pre-flight checks and backups.
            lock: Lock serializing runs across processes.
        """
        self._db = db
        self._client = client
        if repository is None or isinstance(repository, str):
            repository = DirectoryMigrationRepository(repository)
        self._repository = repository
        self._tracker = tracker or MigrationTracker(db)
        self._validator = validator or MigrationValidator()
        self._safety = safety or MigrationSafety(db, client, tracker=self._tracker)
        self._lock = lock or MigrationLock(db)
        self._context = MigrationContext(db=db, client=client)

    @property
    def tracker(self) -> MigrationTracker:
        return self._tracker

    @property
    def safety(self) -> MigrationSafety:
        return self._safety

    @property
    def repository(self) -> MigrationRepository:
        return self._repository

    async def initialize(self) -> None:
        """Initialize tracking and lock collections and indexes."""
        await self._tracker.initialize_tracker()
        await self._lock.initialize()

        logger.info(
            "Migration system initialized",
            event_type="migration_initialized",
            repository=self._repository.location,
        )

    def _load_migrations(
        self, errors: list[str], warnings: list[str]
    ) -> list[Migration]:
        """Load every migration in the repository, validating each once."""
        migrations: list[Migration] = []
        seen_ids: set[str] = set()

        for name in self._repository.list_names():
            try:
                migration = self._repository.load(name)
            except MigrationLoadError as e:
                errors.append(str(e))
                continue

            validation = self._validator.validate_migration(migration)
            warnings.extend(f"{migration.id or name}: {w}" for w in validation.warnings)
            if not validation.valid:
                errors.append(f"Invalid migration {name}: {', '.join(validation.errors)}")
                continue

            if migration.sequence != sequence_number(name):
                errors.append(f"Migration id {migration.id} does not match source {name}")
                continue
            if migration.id in seen_ids:
                errors.append(f"Duplicate migration id {migration.id}")
                continue

            seen_ids.add(migration.id)
            migrations.append(migration)

        migrations.sort(key=lambda m: m.id)
        return migrations

    def _load_valid_migrations(self, warnings: list[str]) -> list[Migration]:
        """
        Validate the file sequence, then load every migration.

        Raises:
            MigrationValidationError: If the sequence or any migration is invalid.
        """
        files_validation = self._validator.validate_migration_files(self._repository)
        warnings.extend(files_validation.warnings)
        if not files_validation.valid:
            raise MigrationValidationError(
                "Migration files are out of sequence", files_validation.errors
            )

        errors: list[str] = []
        migrations = self._load_migrations(errors, warnings)
        if errors:
            raise MigrationValidationError("Invalid migrations found", errors)
        return migrations

    def discover_migrations(self) -> list[Migration]:
        """
        Discover all valid migrations in the repository.

        Invalid migrations are logged and skipped.

        Returns:
            List of migrations sorted by id.
        """
        errors: list[str] = []
        migrations = self._load_migrations(errors, [])

        for error in errors:
            logger.error(
                "Skipping migration: {error}", event_type="migration_invalid", error=error
            )

        logger.info(
            "Discovered {count} migrations",
            event_type="migrations_discovered",
            count=len(migrations),
        )
        return migrations

    async def run_migrations(
        self, options: Optional[MigrationRunOptions] = None
    ) -> MigrationRunResult:
        """
        Run migrations according to options.

        Returns:
            MigrationRunResult; success is False on any error, warnings
            never change it.
        """
        options = options or MigrationRunOptions()
        direction = Direction(options.direction)
        start_time = time.time()
        result = MigrationRunResult()

        try:
            if not options.dry_run:
                await self.initialize()

            try:
                available = self._load_valid_migrations(result.warnings)
            except MigrationValidationError as e:
                result.success = False
                result.errors.extend(e.errors)
                return result

            if not available:
                logger.info("No migrations found", event_type="migrations_none")
                return result

            candidates = await self._determine_candidates(available, direction, options, result)
            if not result.success:
                return result
            if not candidates:
                logger.info("No migrations to run", event_type="migrations_up_to_date")
                return result

            if options.dry_run:
                await self._execute(candidates, direction, options, result)
                return result

            if not await self._check_safety(direction, options, result):
                return result

            if not await self._lock.acquire():
                return result.fail(
                    "Unable to acquire migration lock: another run is in progress"
                )

            keep_alive = asyncio.create_task(self._lock.keep_alive())
            try:
                if options.backup:
                    backup = await self._safety.create_backup()
                    if not backup.success:
                        return result.fail(f"Backup failed: {backup.error}")
                    result.backup_path = backup.backup_path

                await self._execute(candidates, direction, options, result)
            finally:
                keep_alive.cancel()
                with suppress(asyncio.CancelledError):
                    await keep_alive
                await self._lock.release()

        except Exception as e:
            logger.exception(
                "Migration runner error: {error}", event_type="migration_runner_error", error=str(e)
            )
            result.fail(f"Migration runner error: {e}")
        finally:
            result.total_time = _elapsed_ms(start_time)

        return result

    async def _determine_candidates(
        self,
        available: list[Migration],
        direction: Direction,
        options: MigrationRunOptions,
        result: MigrationRunResult,
    ) -> list[Migration]:
        by_id = {m.id: m for m in available}

        if options.target:
            migration = by_id.get(options.target)
            if migration is None:
                result.fail(f"Migration {options.target} not found")
                return []

            applied = await self._tracker.get_applied_migrations()
            if direction == Direction.UP and migration.id in applied:
                result.warnings.append(f"Migration {migration.id} is already applied; running it again")
            elif direction == Direction.DOWN and migration.id not in applied:
                result.warnings.append(f"Migration {migration.id} is not applied; running down() anyway")
            return [migration]

        if direction == Direction.DOWN:
            applied = await self._tracker.get_applied_migrations()
            if not applied:
                logger.info("No migrations to rollback", event_type="migration_none")
                return []

            last_applied = applied[-1]
            migration = by_id.get(last_applied)
            if migration is None:
                result.fail(f"Migration {last_applied} is applied but its source was not found")
                return []
            return [migration]

        pending_ids = await self._tracker.get_pending_migrations([m.id for m in available])
        return [by_id[migration_id] for migration_id in pending_ids]

    async def _check_safety(
        self,
        direction: Direction,
        options: MigrationRunOptions,
        result: MigrationRunResult,
    ) -> bool:
        check = await self._safety.perform_safety_checks(
            destructive=direction == Direction.DOWN,
            confirmed=options.confirm or options.force,
        )
        result.warnings.extend(check.warnings)

        if check.safe:
            return True

        if options.force:
            result.warnings.extend(f"Ignored safety blocker: {b}" for b in check.blockers)
            return True

        result.success = False
        result.errors.extend(check.blockers)
        return False

    async def _execute(
        self,
        candidates: list[Migration],
        direction: Direction,
        options: MigrationRunOptions,
        result: MigrationRunResult,
    ) -> None:
        """Run candidates strictly one after another, stopping at the first failure."""
        for migration in candidates:
            if not options.dry_run and not await self._lock.refresh():
                result.fail("Migration lock lost: another run may be in progress")
                break

            migration_result = await self._run_single_migration(
                migration, direction, options.dry_run
            )

            if not migration_result.success:
                result.fail(f"Migration {migration.id} failed: {migration_result.error}")
                break

            result.migrations_run.append(migration.id)

            if (
                options.validate
                and not options.dry_run
                and direction == Direction.UP
                and migration.validate is not None
            ):
                try:
                    if not await migration.run_validate(self._context):
                        result.warnings.append(f"Migration {migration.id} validation failed")
                except Exception as e:
                    result.warnings.append(f"Migration {migration.id} validation error: {e}")

    async def _run_single_migration(
        self,
        migration: Migration,
        direction: Direction,
        dry_run: bool = False,
    ) -> MigrationResult:
        prefix = "[DRY RUN] " if dry_run else ""
        logger.info(
            prefix + "Running migration {migration_id} ({direction})",
            event_type="migration_dry_run" if dry_run else "migration_applying",
            migration_id=migration.id,
            direction=direction.value,
        )

        if dry_run:
            validation = self._validator.validate_migration(migration)
            return MigrationResult(
                success=validation.valid,
                message="Dry run successful" if validation.valid else "Validation failed",
                error=", ".join(validation.errors) or None,
            )

        if direction == Direction.UP:
            await self._tracker.record_migration_start(
                migration.id, migration.description, migration.author, migration.checksum
            )

        step = migration.up if direction == Direction.UP else migration.down
        start_time = time.time()
        try:
            migration_result = await step(self._context)
            if migration_result is None:
                migration_result = MigrationResult(success=True)
        except Exception as e:
            migration_result = MigrationResult.failure(str(e))

        if not migration_result.execution_time:
            migration_result.execution_time = _elapsed_ms(start_time)

        if direction == Direction.UP:
            await self._tracker.record_migration_complete(
                migration.id, migration_result, migration_result.rollback_info
            )
        elif migration_result.success:
            await self._tracker.record_migration_rollback(migration.id)

        if migration_result.success:
            logger.info(
                "Migration {migration_id} {direction} completed in {execution_time_ms}ms, "
                "documents affected: {documents_affected}",
                event_type="migration_applied" if direction == Direction.UP else "migration_rolled_back",
                migration_id=migration.id,
                direction=direction.value,
                execution_time_ms=migration_result.execution_time,
                documents_affected=migration_result.documents_affected or 0,
            )
        else:
            logger.error(
                "Migration {migration_id} {direction} failed: {error}",
                event_type="migration_failed",
                migration_id=migration.id,
                direction=direction.value,
                error=migration_result.error,
            )

        return migration_result

    async def get_status(self) -> dict[str, Any]:
        """
        Get current migration status.

        Returns:
            Dictionary with the summary counts (total, applied, pending,
            failed, last_migration) under "status", plus the id lists.
        """
        await self._tracker.initialize_tracker()

        available_ids = [m.id for m in self.discover_migrations()]
        applied = await self._tracker.get_applied_migrations()
        pending = await self._tracker.get_pending_migrations(available_ids)
        failed = await self._tracker.get_failed_migrations()
        status = await self._tracker.get_migration_status()

        status["total"] = len(available_ids)
        status["pending"] = len(pending)

        return {
            "status": status,
            "available_migrations": available_ids,
            "applied_migrations": applied,
            "pending_migrations": pending,
            "failed_migrations": failed,
        }

    async def validate_migrations(self, check_applied: bool = False) -> ValidationResult:
        """
        Validate the migration set without applying anything.

        Args:
            check_applied: Also run validate() of every applied migration
                against the database; failures are reported as warnings.
        """
        files_validation = self._validator.validate_migration_files(self._repository)
        errors = list(files_validation.errors)
        warnings = list(files_validation.warnings)

        migrations = self._load_migrations(errors, warnings)

        if check_applied and not errors:
            applied = set(await self._tracker.get_applied_migrations())
            for migration in migrations:
                if migration.id not in applied or migration.validate is None:
                    continue
                try:
                    if not await migration.run_validate(self._context):
                        warnings.append(f"Migration {migration.id} validation failed")
                except Exception as e:
                    warnings.append(f"Migration {migration.id} validation error: {e}")

        return ValidationResult.from_lists(errors, warnings)

    async def verify_checksums(self) -> list[dict]:
        """
        Verify that applied migrations haven't been modified.

        Returns:
            List of migrations with checksum mismatches.
        """
        records = await self._tracker.get_all_migration_records()
        all_migrations = {m.id: m for m in self.discover_migrations()}
        mismatches = []

        for record in records:
            if record.status != MigrationStatus.COMPLETED or not record.checksum:
                continue
            migration = all_migrations.get(record.migration_id)
            if migration and migration.checksum and migration.checksum != record.checksum:
                mismatches.append(
                    {
                        "migration_id": record.migration_id,
                        "expected_checksum": record.checksum,
                        "actual_checksum": migration.checksum,
                    }
                )

        return mismatches

    async def reset(self) -> int:
        """Delete all migration records. Returns the number deleted."""
        return await self._tracker.clear_records()
