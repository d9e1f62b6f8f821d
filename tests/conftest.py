import copy
import itertools
from dataclasses import dataclass, field
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure

from docmigrate.migrations.models import SafetyCheckResult

_ids = itertools.count(1)


@dataclass
class FakeUpdateResult:
    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Any = None


@dataclass
class FakeDeleteResult:
    deleted_count: int = 0


@dataclass
class FakeInsertManyResult:
    inserted_ids: list = field(default_factory=list)


def _matches(doc: dict, query: dict) -> bool:
    for key, condition in query.items():
        if key == "$and":
            if not all(_matches(doc, clause) for clause in condition):
                return False
            continue
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, value in condition.items():
                if op == "$exists":
                    if (key in doc) != bool(value):
                        return False
                elif op == "$lt":
                    if key not in doc or not doc[key] < value:
                        return False
                elif op == "$in":
                    if doc.get(key) not in value:
                        return False
                else:
                    raise NotImplementedError(op)
        elif key not in doc or doc[key] != condition:
            return False
    return True


def _apply_update(doc: dict, update: dict) -> bool:
    before = copy.deepcopy(doc)
    for op, fields in update.items():
        if op == "$set":
            doc.update(copy.deepcopy(fields))
        elif op == "$unset":
            for key in fields:
                doc.pop(key, None)
        elif op == "$rename":
            for old, new in fields.items():
                if old in doc:
                    doc[new] = doc.pop(old)
        else:
            raise NotImplementedError(op)
    return doc != before


class FakeCursor:
    """Enough of AsyncIOMotorCursor for find().sort().limit() chains."""

    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key, direction=None):
        keys = [(key, direction or 1)] if isinstance(key, str) else list(key)
        for name, order in reversed(keys):
            self._docs.sort(key=lambda d: d.get(name), reverse=order < 0)
        return self

    def limit(self, count: int):
        self._docs = self._docs[:count]
        return self

    async def to_list(self, length: Optional[int] = None):
        return self._docs if length is None else self._docs[:length]

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class FakeCollection:
    """In-memory stand-in for AsyncIOMotorCollection."""

    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        self.indexes: dict[str, dict] = {}

    def find(self, query: Optional[dict] = None, session=None) -> FakeCursor:
        return FakeCursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])

    async def find_one(self, query: Optional[dict] = None, session=None):
        for doc in self.docs:
            if _matches(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    async def count_documents(self, query: dict, session=None) -> int:
        return sum(1 for d in self.docs if _matches(d, query))

    async def insert_one(self, document: dict, session=None):
        doc = copy.deepcopy(document)
        doc.setdefault("_id", next(_ids))
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise DuplicateKeyError("duplicate _id")
        self.docs.append(doc)
        return doc["_id"]

    async def insert_many(self, documents: list[dict], session=None):
        return FakeInsertManyResult([await self.insert_one(d) for d in documents])

    async def _upsert(self, query: dict, update: dict) -> dict:
        doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
        _apply_update(doc, update)
        await self.insert_one(doc)
        return self.docs[-1]

    async def update_one(self, query: dict, update: dict, upsert: bool = False, session=None):
        for doc in self.docs:
            if _matches(doc, query):
                return FakeUpdateResult(1, int(_apply_update(doc, update)))
        if upsert:
            doc = await self._upsert(query, update)
            return FakeUpdateResult(upserted_id=doc["_id"])
        return FakeUpdateResult()

    async def update_many(self, query: dict, update: dict, session=None):
        matched = [d for d in self.docs if _matches(d, query)]
        modified = sum(1 for d in matched if _apply_update(d, update))
        return FakeUpdateResult(len(matched), modified)

    async def find_one_and_update(self, query: dict, update: dict, upsert: bool = False, session=None):
        for doc in self.docs:
            if _matches(doc, query):
                before = copy.deepcopy(doc)
                _apply_update(doc, update)
                return before
        if upsert:
            await self._upsert(query, update)
        return None

    async def delete_one(self, query: dict, session=None):
        for doc in self.docs:
            if _matches(doc, query):
                self.docs.remove(doc)
                return FakeDeleteResult(1)
        return FakeDeleteResult(0)

    async def delete_many(self, query: dict, session=None):
        kept = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return FakeDeleteResult(deleted)

    async def create_index(self, keys, session=None, **options) -> str:
        if isinstance(keys, str):
            keys = [(keys, 1)]
        name = options.pop("name", None) or "_".join(f"{k}_{d}" for k, d in keys)
        self.indexes[name] = {"key": list(keys), **options}
        return name

    async def create_indexes(self, models, session=None) -> list[str]:
        names = []
        for model in models:
            document = dict(model.document)
            name = document.pop("name")
            self.indexes[name] = document
            names.append(name)
        return names

    async def drop_index(self, name: str, session=None) -> None:
        if name not in self.indexes:
            raise OperationFailure(f"index not found with name [{name}]")
        del self.indexes[name]


class FakeDatabase:
    """In-memory stand-in for AsyncIOMotorDatabase."""

    def __init__(self, name: str = "test_db"):
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.created: list[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self) -> list[str]:
        return sorted(
            name
            for name, collection in self.collections.items()
            if name in self.created or collection.docs
        )

    async def create_collection(self, name: str, session=None, **options):
        if name in self.created:
            raise OperationFailure(f"Collection {name} already exists")
        self.created.append(name)
        return self[name]

    async def drop_collection(self, name: str, session=None) -> None:
        self.collections.pop(name, None)
        if name in self.created:
            self.created.remove(name)

    async def command(self, name: str, *args, **kwargs) -> dict:
        if name == "buildInfo":
            return {"version": "7.0.4"}
        if name == "collStats":
            return {"size": 0}
        return {"ok": 1}


class FakeTransaction:
    """Snapshots the database on start and restores it when aborted."""

    def __init__(self, db: FakeDatabase):
        self._db = db
        self._snapshot: dict = {}
        self.committed = False
        self.aborted = False

    async def __aenter__(self):
        self._snapshot = copy.deepcopy(self._db.collections)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.committed = True
        else:
            self._db.collections = self._snapshot
            self.aborted = True
        return False


class FakeSession:
    def __init__(self, db: FakeDatabase):
        self._db = db
        self.transactions: list[FakeTransaction] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def start_transaction(self) -> FakeTransaction:
        transaction = FakeTransaction(self._db)
        self.transactions.append(transaction)
        return transaction


class FakeClient:
    """In-memory stand-in for AsyncIOMotorClient bound to one database."""

    def __init__(self, db: FakeDatabase):
        self._db = db
        self.sessions: list[FakeSession] = []
        self.admin = MagicMock()
        self.admin.command = AsyncMock(return_value={"ok": 1})

    async def start_session(self) -> FakeSession:
        session = FakeSession(self._db)
        self.sessions.append(session)
        return session


@pytest.fixture
def fake_db():
    """In-memory database."""
    return FakeDatabase()


@pytest.fixture
def fake_client(fake_db):
    """In-memory client owning fake_db."""
    return FakeClient(fake_db)


@pytest.fixture
def safe_safety():
    """Safety double that always reports the environment as safe."""
    safety = MagicMock()
    safety.perform_safety_checks = AsyncMock(
        return_value=SafetyCheckResult(
            safe=True, warnings=[], blockers=[], environment="development"
        )
    )
    safety.create_backup = AsyncMock()
    return safety
