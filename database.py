"""
MongoDB-backed Store.

Each collection is named after the lowercased schema class (``like``,
``match``, ``conversation``, ``message``, ``pass``, ``profile``, ``session``).
Unique keys become unique compound indexes, created the first time a key is
used for a collection.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache
from typing import List, Optional, Set, Tuple

from bson import ObjectId
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from store import (
    AlreadyExists,
    Document,
    Inserted,
    InsertCallback,
    InsertResult,
    PersistenceError,
    Query,
    SortSpec,
    Store,
    Subscription,
    deliver,
)

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "pawmatch")


def new_id() -> str:
    return str(ObjectId())


class MongoStore(Store):
    def __init__(self, db) -> None:
        self.db = db
        self._indexed: Set[Tuple[str, Tuple[str, ...]]] = set()

    async def _ensure_unique_index(self, collection: str, unique_key: Tuple[str, ...]) -> None:
        if unique_key == ("_id",) or (collection, unique_key) in self._indexed:
            return
        await self.db[collection].create_index([(field, ASCENDING) for field in unique_key], unique=True)
        self._indexed.add((collection, unique_key))

    async def insert_unique(self, collection: str, doc: Document, unique_key: Tuple[str, ...]) -> InsertResult:
        doc = {"_id": new_id(), **doc}
        try:
            await self._ensure_unique_index(collection, unique_key)
            await self.db[collection].insert_one(doc)
        except DuplicateKeyError:
            return AlreadyExists(unique_key)
        except PyMongoError as exc:
            raise PersistenceError(f"insert into {collection} failed") from exc
        return Inserted(doc)

    async def insert(self, collection: str, doc: Document) -> Document:
        doc = {"_id": new_id(), **doc}
        try:
            await self.db[collection].insert_one(doc)
        except PyMongoError as exc:
            raise PersistenceError(f"insert into {collection} failed") from exc
        return doc

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        try:
            return await self.db[collection].find_one(query)
        except PyMongoError as exc:
            raise PersistenceError(f"find in {collection} failed") from exc

    async def list_all(
        self,
        collection: str,
        query: Query,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        cursor = self.db[collection].find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        try:
            return await cursor.to_list()
        except PyMongoError as exc:
            raise PersistenceError(f"list of {collection} failed") from exc

    async def update_where(self, collection: str, query: Query, patch: Document) -> int:
        try:
            result = await self.db[collection].update_many(query, {"$set": patch})
        except PyMongoError as exc:
            raise PersistenceError(f"update of {collection} failed") from exc
        return result.modified_count

    async def count(self, collection: str, query: Query) -> int:
        try:
            return await self.db[collection].count_documents(query)
        except PyMongoError as exc:
            raise PersistenceError(f"count of {collection} failed") from exc

    async def subscribe_inserts(self, collection: str, query: Query, callback: InsertCallback) -> Subscription:
        # Change streams need a replica set; a standalone mongod rejects watch().
        match = {"operationType": "insert"}
        match.update({f"fullDocument.{field}": value for field, value in query.items()})
        try:
            stream = await self.db[collection].watch([{"$match": match}])
        except PyMongoError as exc:
            raise PersistenceError(f"watch on {collection} failed") from exc

        async def pump() -> None:
            async with stream:
                async for change in stream:
                    await deliver(callback, change["fullDocument"])

        logger.debug("database: watching inserts", extra={"collection": collection})
        return Subscription(asyncio.create_task(pump()))

    async def ping(self) -> bool:
        try:
            await self.db.command("ping")
        except PyMongoError as exc:
            logger.warning("database ping failed: %s", exc)
            return False
        return True

    async def collection_names(self) -> List[str]:
        try:
            return await self.db.list_collection_names()
        except PyMongoError as exc:
            raise PersistenceError("listing collections failed") from exc


@lru_cache(maxsize=1)
def get_mongo_store() -> MongoStore:
    client = AsyncMongoClient(DATABASE_URL, tz_aware=True)
    return MongoStore(client[DATABASE_NAME])
