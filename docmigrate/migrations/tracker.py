"""
Migration execution history, stored in the target database itself.
"""

from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel

from docmigrate.core.config import settings
from docmigrate.log.logging import logger
from docmigrate.migrations.models import MigrationRecord, MigrationResult, MigrationStatus


class MigrationTracker:
    """
    Owns the collection of MigrationRecord documents.

    There is at most one record per migration id: every write is an
    update keyed on ``migration_id``, and the collection carries a unique
    index on it.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self._db = db
        self._collection_name = collection_name or settings.migrations_collection
        self._environment = environment or settings.environment
        self._collection = db[self._collection_name]

    @property
    def collection_name(self) -> str:
        return self._collection_name

    async def initialize_tracker(self) -> None:
        """Ensure the tracking collection and its indexes exist. Safe to call repeatedly."""
        collections = await self._db.list_collection_names()
        if self._collection_name not in collections:
            await self._db.create_collection(self._collection_name)
            logger.info(
                "Created migrations tracking collection",
                event_type="migration_tracker_created",
                collection=self._collection_name,
            )

        await self._collection.create_indexes(
            [
                IndexModel([("migration_id", ASCENDING)], name="idx_migration_id", unique=True),
                IndexModel([("applied_at", DESCENDING)], name="idx_applied_at"),
                IndexModel([("status", ASCENDING)], name="idx_status"),
            ]
        )

    async def record_migration_start(
        self,
        migration_id: str,
        description: str,
        author: str,
        checksum: str = "",
    ) -> None:
        """Upsert the record for migration_id with status=running."""
        record = MigrationRecord(
            migration_id=migration_id,
            description=description,
            applied_at=datetime.utcnow(),
            author=author,
            environment=self._environment,
            status=MigrationStatus.RUNNING,
            checksum=checksum,
        )
        data = record.to_dict()
        # Outcome fields of an earlier attempt are replaced on completion.
        for key in ("execution_time", "documents_affected", "rollback_info", "error"):
            data.pop(key)

        await self._collection.update_one(
            {"migration_id": migration_id},
            {"$set": data},
            upsert=True,
        )

    async def record_migration_complete(
        self,
        migration_id: str,
        result: MigrationResult,
        rollback_info: Any = None,
    ) -> None:
        """Mark the record completed or failed according to result.success."""
        status = MigrationStatus.COMPLETED if result.success else MigrationStatus.FAILED
        update: dict[str, Any] = {
            "$set": {
                "status": status.value,
                "execution_time": result.execution_time,
                "documents_affected": result.documents_affected,
                "rollback_info": rollback_info,
            }
        }

        if result.success:
            update["$unset"] = {"error": ""}
        else:
            update["$set"]["error"] = result.error or "Migration failed"

        await self._collection.update_one({"migration_id": migration_id}, update)

    async def record_migration_rollback(self, migration_id: str) -> None:
        await self._collection.update_one(
            {"migration_id": migration_id},
            {
                "$set": {
                    "status": MigrationStatus.ROLLED_BACK.value,
                    "applied_at": datetime.utcnow(),
                }
            },
        )

    async def get_applied_migrations(self) -> list[str]:
        """
        Ids of completed migrations, oldest first.

        Returns:
            Migration ids sorted ascending by applied_at.
        """
        cursor = self._collection.find(
            {"status": MigrationStatus.COMPLETED.value}
        ).sort([("applied_at", ASCENDING), ("migration_id", ASCENDING)])

        return [doc["migration_id"] async for doc in cursor]

    async def get_pending_migrations(self, all_migration_ids: list[str]) -> list[str]:
        """all_migration_ids minus the applied ones, keeping the input order."""
        applied = set(await self.get_applied_migrations())
        return [migration_id for migration_id in all_migration_ids if migration_id not in applied]

    async def get_migration_record(self, migration_id: str) -> Optional[MigrationRecord]:
        doc = await self._collection.find_one({"migration_id": migration_id})
        return MigrationRecord.from_dict(doc) if doc else None

    async def get_all_migration_records(self) -> list[MigrationRecord]:
        """All records, most recent first."""
        cursor = self._collection.find({}).sort(
            [("applied_at", DESCENDING), ("migration_id", DESCENDING)]
        )
        return [MigrationRecord.from_dict(doc) async for doc in cursor]

    async def get_failed_migrations(self) -> list[MigrationRecord]:
        cursor = self._collection.find(
            {"status": MigrationStatus.FAILED.value}
        ).sort("applied_at", DESCENDING)
        return [MigrationRecord.from_dict(doc) async for doc in cursor]

    async def count_running(self) -> int:
        return await self._collection.count_documents(
            {"status": MigrationStatus.RUNNING.value}
        )

    async def get_migration_status(self) -> dict[str, Any]:
        """
        Summary counts over the tracked records.

        ``pending`` is always 0 here since the tracker does not know which
        migrations exist; the runner fills it in.
        """
        records = await self.get_all_migration_records()

        return {
            "total": len(records),
            "applied": sum(1 for r in records if r.status == MigrationStatus.COMPLETED),
            "pending": 0,
            "failed": sum(1 for r in records if r.status == MigrationStatus.FAILED),
            "last_migration": records[0] if records else None,
        }

    async def clear_records(self) -> int:
        """Delete every tracking record. Returns the number deleted."""
        result = await self._collection.delete_many({})
        logger.warning(
            "Cleared {count} migration records",
            event_type="migration_records_cleared",
            count=result.deleted_count,
        )
        return result.deleted_count
