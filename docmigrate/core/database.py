"""
Database connection management for the migration engine.

This module provides:
- A MongoDB client with connection pooling and timeouts from settings
- Connectivity checks
- The ``MigrationContext`` handed to every migration's up/down/validate
"""
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from docmigrate.core.config import settings
from docmigrate.log.logging import logger
from docmigrate.migrations.models import MigrationContext


class DatabaseManager:
    """
    Manages the MongoDB connection shared by one migration invocation.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def client(self) -> AsyncIOMotorClient:
        """Get or create the MongoDB client with connection pooling."""
        if self._client is None:
            self._client = AsyncIOMotorClient(
                settings.mongodb,
                maxPoolSize=settings.mongo_max_pool_size,
                minPoolSize=settings.mongo_min_pool_size,
                connectTimeoutMS=settings.mongo_connect_timeout_ms,
                serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
                socketTimeoutMS=settings.mongo_socket_timeout_ms or None,
                retryWrites=True,
                retryReads=True,
            )
        return self._client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """Get the configured database."""
        if self._database is None:
            self._database = self.client[settings.mongodb_database]
        return self._database

    def build_context(self) -> MigrationContext:
        """Context passed to migrations: the target database and its client."""
        return MigrationContext(db=self.database, client=self.client)

    async def ping(self) -> bool:
        """
        Check if the database connection is healthy.

        Returns:
            True if connection is healthy, False otherwise.
        """
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error("Database ping failed: {error}", error=str(e))
            return False

    async def close(self) -> None:
        """Close the database connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("Database connection closed")


# Singleton instance
db_manager = DatabaseManager()
