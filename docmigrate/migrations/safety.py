"""
Pre-flight safety checks and backup/restore orchestration.

Backups are delegated to a ``BackupToolClient``; the default client runs
the MongoDB database tools (mongodump / mongorestore) as subprocesses.
"""

import asyncio
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from docmigrate.core.config import settings
from docmigrate.log.logging import logger
from docmigrate.migrations.exceptions import (
    MigrationConcurrencyError,
    MigrationConnectivityError,
    MigrationResourceError,
    MigrationToolError,
)
from docmigrate.migrations.models import (
    BackupOptions,
    BackupResult,
    BackupVerification,
    SafetyCheckResult,
)
from docmigrate.migrations.tracker import MigrationTracker

BYTES_PER_MB = 1024 * 1024
BACKUP_FILE_SUFFIX = ".bson"

DiskSpaceProbe = Callable[[], Optional[float]]


class BackupToolClient(Protocol):
    """Narrow interface over the external dump/restore tool."""

    async def dump(
        self,
        uri: str,
        database: str,
        output_path: str,
        include_collections: list[str],
        exclude_collections: list[str],
    ) -> None:
        """Write one file per collection under <output_path>/<database>/."""
        ...

    async def restore(self, uri: str, backup_path: str, drop: bool = True) -> None:
        """Restore the backup directory, dropping existing collections first when drop is set."""
        ...


class MongoToolsClient:
    """BackupToolClient backed by the mongodump and mongorestore binaries."""

    def __init__(
        self,
        mongodump_bin: Optional[str] = None,
        mongorestore_bin: Optional[str] = None,
    ):
        self._mongodump_bin = mongodump_bin or settings.mongodump_bin
        self._mongorestore_bin = mongorestore_bin or settings.mongorestore_bin

    async def dump(
        self,
        uri: str,
        database: str,
        output_path: str,
        include_collections: list[str],
        exclude_collections: list[str],
    ) -> None:
        base_args = ["--uri", uri, "--db", database, "--out", output_path]

        # mongodump takes a single --collection, so inclusions run one dump each.
        if include_collections:
            for collection in include_collections:
                await self._run_command(
                    self._mongodump_bin, [*base_args, "--collection", collection]
                )
            return

        args = list(base_args)
        for collection in exclude_collections:
            args.extend(["--excludeCollection", collection])
        await self._run_command(self._mongodump_bin, args)

    async def restore(self, uri: str, backup_path: str, drop: bool = True) -> None:
        args = ["--uri", uri, "--dir", backup_path]
        if drop:
            args.append("--drop")
        await self._run_command(self._mongorestore_bin, args)

    async def _run_command(self, command: str, args: list[str]) -> None:
        """
        Run a command and wait for it to exit.

        Raises:
            MigrationToolError: On a non-zero exit status or if the binary is missing.
        """
        logger.debug(
            "Running {command}",
            event_type="migration_tool_exec",
            command=command,
        )
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MigrationToolError(command, None, str(e)) from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise MigrationToolError(
                command, process.returncode, stderr.decode(errors="replace")
            )


def default_disk_space_probe(path: Optional[str] = None) -> DiskSpaceProbe:
    """Free space in MB on the filesystem holding path (or the working directory)."""

    def probe() -> Optional[float]:
        target = path if path and os.path.exists(path) else os.getcwd()
        return shutil.disk_usage(target).free / BYTES_PER_MB

    return probe


def format_bytes(size: float) -> str:
    """Format bytes to human readable string."""
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    return f"{size:.1f} {units[unit_index]}"


def directory_size(path: Path) -> int:
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())


class MigrationSafety:
    """
    Environment checks before a run and backup/restore around it.

    The concurrent-run check here only counts records in status=running.
    It is advisory: two processes starting together can both pass it. The
    runner's MigrationLock is what actually serializes runs.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: AsyncIOMotorClient,
        tool: Optional[BackupToolClient] = None,
        uri: Optional[str] = None,
        environment: Optional[str] = None,
        disk_space_probe: Optional[DiskSpaceProbe] = None,
        tracker: Optional[MigrationTracker] = None,
    ):
        self._db = db
        self._client = client
        self._tool = tool or MongoToolsClient()
        self._uri = uri or settings.mongodb
        self._environment = environment or settings.environment
        self._disk_space_probe = disk_space_probe or default_disk_space_probe(
            settings.backup_dir
        )
        self._tracker = tracker or MigrationTracker(db)

    @property
    def environment(self) -> str:
        return self._environment

    async def perform_safety_checks(
        self, destructive: bool = False, confirmed: bool = False
    ) -> SafetyCheckResult:
        """
        Run every pre-flight check.

        Args:
            destructive: The run may lose data (e.g. a rollback).
            confirmed: The operator explicitly confirmed a destructive run.

        Returns:
            SafetyCheckResult with safe = no blockers.
        """
        warnings: list[str] = []
        blockers: list[str] = []

        if self._environment.lower() == "production" and destructive and not confirmed:
            blockers.append("Destructive operations require explicit confirmation in production")

        try:
            await self._check_connectivity()
        except MigrationConnectivityError as e:
            blockers.append(str(e))

        try:
            await self._check_concurrent_runs()
        except MigrationConcurrencyError as e:
            blockers.append(str(e))
        except Exception:
            warnings.append("Could not check for concurrent migrations")

        disk_space: Optional[float] = None
        try:
            disk_space = self._disk_space_probe()
            warning = self._check_disk_space(disk_space)
            if warning:
                warnings.append(warning)
        except MigrationResourceError as e:
            blockers.append(str(e))
        except Exception:
            warnings.append("Could not check disk space")

        collection_sizes: Optional[dict[str, int]] = None
        try:
            collection_sizes = await self.get_collection_sizes()
            total_size = sum(collection_sizes.values())
            if total_size > settings.large_database_bytes:
                warnings.append(f"Large database detected: {format_bytes(total_size)}")
        except Exception:
            warnings.append("Could not analyze collection sizes")

        try:
            build_info = await self._db.command("buildInfo")
            if str(build_info.get("version", "")).startswith("3."):
                warnings.append("MongoDB 3.x detected - some features may not be available")
        except Exception:
            warnings.append("Could not determine MongoDB version")

        for blocker in blockers:
            logger.warning(
                "Safety blocker: {blocker}", event_type="migration_safety_blocker", blocker=blocker
            )

        return SafetyCheckResult(
            safe=not blockers,
            warnings=warnings,
            blockers=blockers,
            environment=self._environment,
            disk_space=disk_space,
            collection_sizes=collection_sizes,
        )

    async def _check_connectivity(self) -> None:
        try:
            await self._client.admin.command("ping")
        except Exception as e:
            raise MigrationConnectivityError(f"Database connection failed: {e}") from e

    async def _check_concurrent_runs(self) -> None:
        running = await self._tracker.count_running()
        if running > 0:
            raise MigrationConcurrencyError(f"{running} migration(s) already running")

    def _check_disk_space(self, disk_space: Optional[float]) -> Optional[str]:
        """
        Returns:
            A warning below the warning threshold, None otherwise.

        Raises:
            MigrationResourceError: Below the blocker threshold.
        """
        if disk_space is None:
            return None
        if disk_space < settings.disk_space_blocker_mb:
            raise MigrationResourceError(
                f"Insufficient disk space: {round(disk_space)}MB available"
            )
        if disk_space < settings.disk_space_warning_mb:
            return f"Low disk space: {round(disk_space)}MB available"
        return None

    async def get_collection_sizes(self) -> dict[str, int]:
        sizes: dict[str, int] = {}

        for name in await self._db.list_collection_names():
            try:
                stats = await self._db.command("collStats", name)
                sizes[name] = int(stats.get("size", 0))
            except Exception:
                sizes[name] = 0

        return sizes

    async def create_backup(self, options: Optional[BackupOptions] = None) -> BackupResult:
        """
        Dump the database to a new timestamped directory.

        Returns:
            BackupResult with the backup path, total size and collections captured.
        """
        options = options or BackupOptions()
        timestamp = datetime.utcnow()
        backup_name = f"{self._db.name}_backup_{timestamp.strftime('%Y-%m-%dT%H-%M-%S-%f')}"
        output_dir = Path(options.output_dir or settings.backup_dir)
        backup_path = output_dir / backup_name

        logger.info(
            "Creating backup at {backup_path}",
            event_type="migration_backup_started",
            backup_path=str(backup_path),
        )

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            await self._tool.dump(
                self._uri,
                self._db.name,
                str(backup_path),
                options.include_collections,
                options.exclude_collections,
            )
        except Exception as e:
            logger.error(
                "Backup failed: {error}", event_type="migration_backup_failed", error=str(e)
            )
            return BackupResult(success=False, timestamp=timestamp, error=str(e))

        collections = self._backup_collections(backup_path)
        size = directory_size(backup_path) if backup_path.exists() else 0

        logger.info(
            "Backup created with {count} collections",
            event_type="migration_backup_created",
            backup_path=str(backup_path),
            count=len(collections),
            size=size,
        )
        return BackupResult(
            success=True,
            timestamp=timestamp,
            backup_path=str(backup_path),
            size=size,
            collections=collections,
        )

    async def restore_from_backup(self, backup_path: str) -> BackupResult:
        """Restore a backup directory, dropping existing collections before restoring."""
        timestamp = datetime.utcnow()
        path = Path(backup_path)

        if not path.exists():
            return BackupResult(
                success=False,
                timestamp=timestamp,
                error=f"Backup path does not exist: {backup_path}",
            )

        logger.info(
            "Restoring backup {backup_path}",
            event_type="migration_restore_started",
            backup_path=backup_path,
        )

        try:
            await self._tool.restore(self._uri, backup_path, drop=True)
        except Exception as e:
            logger.error(
                "Restore failed: {error}", event_type="migration_restore_failed", error=str(e)
            )
            return BackupResult(success=False, timestamp=timestamp, error=str(e))

        logger.info(
            "Backup restored", event_type="migration_restore_completed", backup_path=backup_path
        )
        return BackupResult(
            success=True,
            timestamp=timestamp,
            backup_path=backup_path,
            size=directory_size(path),
            collections=self._backup_collections(path),
        )

    async def verify_backup(self, backup_path: str) -> BackupVerification:
        """Check that a backup holds non-empty collection files for this database."""
        errors: list[str] = []
        collections = 0
        total_size = 0

        db_backup_path = Path(backup_path) / self._db.name
        if not db_backup_path.is_dir():
            return BackupVerification(
                valid=False,
                collections=0,
                total_size=0,
                errors=["Database backup directory not found"],
            )

        try:
            for file in sorted(db_backup_path.iterdir()):
                if file.suffix != BACKUP_FILE_SUFFIX:
                    continue
                collections += 1
                file_size = file.stat().st_size
                total_size += file_size
                if file_size == 0:
                    errors.append(f"Empty backup file: {file.name}")
        except OSError as e:
            errors.append(f"Backup verification failed: {e}")

        if collections == 0:
            errors.append("No collection backups found")

        return BackupVerification(
            valid=not errors,
            collections=collections,
            total_size=total_size,
            errors=errors,
        )

    def _backup_collections(self, backup_path: Path) -> list[str]:
        db_backup_path = backup_path / self._db.name
        if not db_backup_path.is_dir():
            return []
        return sorted(
            f.stem for f in db_backup_path.iterdir() if f.suffix == BACKUP_FILE_SUFFIX
        )
