"""
Mutual exclusion between migration runner processes.

A single lock document is claimed with an atomic find-and-modify. The
upsert only fires when no unexpired lock exists; when one does, the insert
collides on ``_id`` and the claim fails with a duplicate key error. The
holder keeps pushing ``expires_at`` forward while it runs, so a long run
does not outlive its lock.
"""

import asyncio
import os
import socket
from datetime import datetime, timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from docmigrate.core.config import settings
from docmigrate.log.logging import logger
from docmigrate.migrations.exceptions import MigrationLockError
from docmigrate.migrations.models import MigrationLockInfo

LOCK_ID = "migration_lock"


class MigrationLock:
    """
    Lock document guarding a migration run.

    Usage:
        lock = MigrationLock(db)
        await lock.initialize()
        async with lock:
            ...  # run migrations
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: Optional[str] = None,
        timeout: Optional[int] = None,
        owner: Optional[str] = None,
    ):
        self._collection = db[collection_name or settings.migrations_lock_collection]
        self._timeout = timeout if timeout is not None else settings.migrations_lock_timeout
        self._owner = owner or f"{socket.gethostname()}-{os.getpid()}"

    @property
    def owner(self) -> str:
        return self._owner

    async def initialize(self) -> None:
        """Create TTL index on the lock collection for auto-expiry."""
        await self._collection.create_index("expires_at", expireAfterSeconds=0)

    async def acquire(self) -> bool:
        """
        Try to take the lock.

        Returns:
            True if lock acquired, False if another process holds it.
        """
        now = datetime.utcnow()
        lock = MigrationLockInfo(
            locked_at=now,
            locked_by=self._owner,
            expires_at=now + timedelta(seconds=self._timeout),
        )

        try:
            await self._collection.find_one_and_update(
                {"_id": LOCK_ID, "expires_at": {"$lt": now}},
                {"$set": lock.to_dict()},
                upsert=True,
            )
        except DuplicateKeyError:
            holder = await self._collection.find_one({"_id": LOCK_ID})
            logger.warning(
                "Migration lock held by {locked_by}",
                event_type="migration_lock_busy",
                locked_by=(holder or {}).get("locked_by", "unknown"),
            )
            return False

        logger.info(
            "Migration lock acquired",
            event_type="migration_lock_acquired",
            locked_by=self._owner,
        )
        return True

    async def refresh(self) -> bool:
        """
        Push the expiry of the lock held by this process forward.

        Returns:
            False if this process no longer holds the lock.
        """
        expires_at = datetime.utcnow() + timedelta(seconds=self._timeout)
        previous = await self._collection.find_one_and_update(
            {"_id": LOCK_ID, "locked_by": self._owner},
            {"$set": {"expires_at": expires_at}},
        )

        if previous is None:
            logger.error(
                "Migration lock lost",
                event_type="migration_lock_lost",
                locked_by=self._owner,
            )
            return False
        return True

    async def keep_alive(self) -> None:
        """Refresh the lock every third of its timeout until cancelled or lost."""
        interval = max(self._timeout / 3, 1)
        while True:
            await asyncio.sleep(interval)
            if not await self.refresh():
                return

    async def release(self) -> None:
        """Release the lock if this process holds it."""
        await self._collection.delete_one({"_id": LOCK_ID, "locked_by": self._owner})
        logger.info(
            "Migration lock released",
            event_type="migration_lock_released",
            locked_by=self._owner,
        )

    async def __aenter__(self) -> "MigrationLock":
        if not await self.acquire():
            raise MigrationLockError("Unable to acquire migration lock: another run is in progress")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
