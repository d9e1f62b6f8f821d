"""
Reusable document-mutation primitives for migrations.

Every write primitive returns a ``MigrationResult`` instead of raising;
callers must check ``result.success``. Write primitives take an optional
``session`` so they can take part in ``execute_in_transaction``.
"""

import time
from typing import Any, Awaitable, Callable, Optional, Union

from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorClientSession,
    AsyncIOMotorDatabase,
)

from docmigrate.log.logging import logger
from docmigrate.migrations.exceptions import MigrationTransactionError
from docmigrate.migrations.models import MigrationResult

IndexKeys = Union[str, list[tuple[str, Any]]]
TransactionalOperation = Callable[
    [Optional[AsyncIOMotorClientSession]], Awaitable[MigrationResult]
]


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


def _with_field_condition(filter: Optional[dict], field_name: str, exists: bool) -> dict:
    """AND the caller filter with an $exists condition on field_name."""
    condition = {field_name: {"$exists": exists}}
    return {"$and": [filter, condition]} if filter else condition


class MigrationOperations:
    """
    Toolbox of collection operations used inside migrations.

    Usage:
        ops = MigrationOperations(ctx.db, ctx.client)
        result = await ops.add_field("users", "timezone", "UTC")
        if not result.success:
            return result
    """

    def __init__(self, db: AsyncIOMotorDatabase, client: AsyncIOMotorClient):
        self._db = db
        self._client = client

    async def add_field(
        self,
        collection_name: str,
        field_name: str,
        default_value: Any,
        filter: Optional[dict] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """Set field_name on matching documents where it does not exist yet."""
        start_time = time.time()

        try:
            query = _with_field_condition(filter, field_name, False)
            result = await self._db[collection_name].update_many(
                query, {"$set": {field_name: default_value}}, session=session
            )

            return MigrationResult(
                success=True,
                documents_affected=result.modified_count,
                execution_time=_elapsed_ms(start_time),
                message=(
                    f"Added field '{field_name}' to {result.modified_count} "
                    f"documents in {collection_name}"
                ),
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def remove_field(
        self,
        collection_name: str,
        field_name: str,
        filter: Optional[dict] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """Unset field_name on all matching documents."""
        start_time = time.time()

        try:
            result = await self._db[collection_name].update_many(
                filter or {}, {"$unset": {field_name: 1}}, session=session
            )

            return MigrationResult(
                success=True,
                documents_affected=result.modified_count,
                execution_time=_elapsed_ms(start_time),
                message=(
                    f"Removed field '{field_name}' from {result.modified_count} "
                    f"documents in {collection_name}"
                ),
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def rename_field(
        self,
        collection_name: str,
        old_field_name: str,
        new_field_name: str,
        filter: Optional[dict] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """Rename a field on all matching documents ($rename is atomic per document)."""
        start_time = time.time()

        try:
            result = await self._db[collection_name].update_many(
                filter or {}, {"$rename": {old_field_name: new_field_name}}, session=session
            )

            return MigrationResult(
                success=True,
                documents_affected=result.modified_count,
                execution_time=_elapsed_ms(start_time),
                message=(
                    f"Renamed field '{old_field_name}' to '{new_field_name}' in "
                    f"{result.modified_count} documents in {collection_name}"
                ),
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def transform_field(
        self,
        collection_name: str,
        field_name: str,
        transform: Callable[[Any], Any],
        filter: Optional[dict] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """
        Rewrite field_name with transform(value) on every document that has it.

        Best effort: a document whose transform or write fails is logged,
        listed in ``skipped`` and left out of ``documents_affected``; the
        remaining documents are still processed.
        """
        start_time = time.time()
        documents_affected = 0
        skipped: list[str] = []

        try:
            collection = self._db[collection_name]
            query = _with_field_condition(filter, field_name, True)

            async for doc in collection.find(query, session=session):
                if field_name not in doc:
                    continue
                try:
                    new_value = transform(doc[field_name])
                    await collection.update_one(
                        {"_id": doc["_id"]},
                        {"$set": {field_name: new_value}},
                        session=session,
                    )
                    documents_affected += 1
                except Exception as e:
                    skipped.append(f"{doc.get('_id')}: {e}")
                    logger.warning(
                        "Failed to transform document {document_id} in {collection}: {error}",
                        event_type="migration_transform_skipped",
                        collection=collection_name,
                        document_id=str(doc.get("_id")),
                        error=str(e),
                    )

            message = (
                f"Transformed field '{field_name}' in {documents_affected} "
                f"documents in {collection_name}"
            )
            if skipped:
                message += f" ({len(skipped)} skipped)"

            return MigrationResult(
                success=True,
                documents_affected=documents_affected,
                execution_time=_elapsed_ms(start_time),
                message=message,
                skipped=skipped,
            )
        except Exception as e:
            result = MigrationResult.failure(str(e), _elapsed_ms(start_time))
            result.documents_affected = documents_affected
            result.skipped = skipped
            return result

    async def create_index(
        self,
        collection_name: str,
        keys: IndexKeys,
        session: Optional[AsyncIOMotorClientSession] = None,
        **options: Any,
    ) -> MigrationResult:
        """Create an index; the resulting index name is returned in index_name."""
        start_time = time.time()

        try:
            index_name = await self._db[collection_name].create_index(
                keys, session=session, **options
            )

            return MigrationResult(
                success=True,
                execution_time=_elapsed_ms(start_time),
                message=f"Created index '{index_name}' on {collection_name}",
                index_name=index_name,
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def drop_index(
        self,
        collection_name: str,
        index_name: str,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        start_time = time.time()

        try:
            await self._db[collection_name].drop_index(index_name, session=session)

            return MigrationResult(
                success=True,
                execution_time=_elapsed_ms(start_time),
                message=f"Dropped index '{index_name}' from {collection_name}",
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def insert_seed_data(
        self,
        collection_name: str,
        documents: list[dict],
        upsert: bool = False,
        upsert_key: Optional[str] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """
        Insert seed documents.

        With ``upsert`` and ``upsert_key`` each document is upserted on its
        upsert_key value and only inserted or modified documents are counted.
        Otherwise the documents are bulk inserted.
        """
        start_time = time.time()

        try:
            collection = self._db[collection_name]
            documents_affected = 0

            if upsert and upsert_key:
                for doc in documents:
                    result = await collection.update_one(
                        {upsert_key: doc.get(upsert_key)},
                        {"$set": doc},
                        upsert=True,
                        session=session,
                    )
                    if result.upserted_id is not None or result.modified_count > 0:
                        documents_affected += 1
            elif documents:
                result = await collection.insert_many(documents, session=session)
                documents_affected = len(result.inserted_ids)

            return MigrationResult(
                success=True,
                documents_affected=documents_affected,
                execution_time=_elapsed_ms(start_time),
                message=f"Inserted/updated {documents_affected} documents in {collection_name}",
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def remove_documents(
        self,
        collection_name: str,
        filter: dict,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        start_time = time.time()

        try:
            result = await self._db[collection_name].delete_many(filter, session=session)

            return MigrationResult(
                success=True,
                documents_affected=result.deleted_count,
                execution_time=_elapsed_ms(start_time),
                message=f"Removed {result.deleted_count} documents from {collection_name}",
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def create_collection(
        self,
        collection_name: str,
        validator: Optional[dict] = None,
        validation_level: Optional[str] = None,
        validation_action: Optional[str] = None,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        """
        Create a collection, optionally with schema validation.

        Args:
            validator: Validation document, e.g. {"$jsonSchema": {...}}.
            validation_level: "off", "strict" or "moderate".
            validation_action: "error" or "warn".
        """
        start_time = time.time()

        options: dict[str, Any] = {}
        if validator is not None:
            options["validator"] = validator
        if validation_level is not None:
            options["validationLevel"] = validation_level
        if validation_action is not None:
            options["validationAction"] = validation_action

        try:
            await self._db.create_collection(collection_name, session=session, **options)

            return MigrationResult(
                success=True,
                execution_time=_elapsed_ms(start_time),
                message=f"Created collection '{collection_name}'",
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def drop_collection(
        self,
        collection_name: str,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> MigrationResult:
        start_time = time.time()

        try:
            await self._db.drop_collection(collection_name, session=session)

            return MigrationResult(
                success=True,
                execution_time=_elapsed_ms(start_time),
                message=f"Dropped collection '{collection_name}'",
            )
        except Exception as e:
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))

    async def count_documents(self, collection_name: str, filter: Optional[dict] = None) -> int:
        return await self._db[collection_name].count_documents(filter or {})

    async def get_sample_documents(self, collection_name: str, limit: int = 5) -> list[dict]:
        """Fetch a few documents to inspect before transforming them."""
        cursor = self._db[collection_name].find({}).limit(limit)
        return await cursor.to_list(length=limit)

    async def execute_in_transaction(
        self, operations: list[TransactionalOperation]
    ) -> MigrationResult:
        """
        Run operations inside one multi-document transaction.

        Each operation is called with the session and must pass it on to
        the primitives it uses. The first failing operation aborts the
        transaction, so none of the batch is committed.

        Usage:
            await ops.execute_in_transaction([
                lambda s: ops.add_field("users", "plan", "free", session=s),
                lambda s: ops.create_index("users", "plan", session=s),
            ])
        """
        start_time = time.time()
        total_documents_affected = 0
        messages: list[str] = []

        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    for operation in operations:
                        result = await operation(session)

                        if not result.success:
                            raise MigrationTransactionError(result.error or "Operation failed")

                        total_documents_affected += result.documents_affected or 0
                        if result.message:
                            messages.append(result.message)

            return MigrationResult(
                success=True,
                documents_affected=total_documents_affected,
                execution_time=_elapsed_ms(start_time),
                message=f"Transaction completed: {'; '.join(messages)}",
            )
        except Exception as e:
            logger.warning(
                "Transaction aborted: {error}",
                event_type="migration_transaction_aborted",
                error=str(e),
            )
            return MigrationResult.failure(str(e), _elapsed_ms(start_time))
