from __future__ import annotations

import asyncio
import copy
import itertools
from typing import Dict, List, Optional, Tuple

import pytest

from store import (
    AlreadyExists,
    Inserted,
    PersistenceError,
    Store,
    Subscription,
    deliver,
)


def _matches(doc: dict, query: dict) -> bool:
    for field, expected in query.items():
        value = doc.get(field)
        if isinstance(value, list) and not isinstance(expected, list):
            if expected not in value:
                return False
        elif value != expected:
            return False
    return True


class MemoryStore(Store):
    """In-process Store that enforces unique keys atomically.

    Every call yields to the event loop first, so two coroutines gathered
    together interleave their calls the way two remote clients would.
    """

    def __init__(self) -> None:
        self.collections: Dict[str, List[dict]] = {}
        self.listeners: List[Tuple[str, dict, asyncio.Queue]] = []
        self._ids = itertools.count(1)

    def rows(self, collection: str) -> List[dict]:
        return self.collections.setdefault(collection, [])

    def _new_id(self) -> str:
        return f"{next(self._ids):024x}"

    def _append(self, collection: str, doc: dict) -> dict:
        doc = {"_id": self._new_id(), **doc}
        self.rows(collection).append(doc)
        for name, query, queue in self.listeners:
            if name == collection and _matches(doc, query):
                queue.put_nowait(copy.deepcopy(doc))
        return copy.deepcopy(doc)

    async def insert_unique(self, collection, doc, unique_key):
        await asyncio.sleep(0)
        key = {field: doc.get(field) for field in unique_key}
        if any(all(row.get(f) == v for f, v in key.items()) for row in self.rows(collection)):
            return AlreadyExists(tuple(unique_key))
        return Inserted(self._append(collection, doc))

    async def insert(self, collection, doc):
        await asyncio.sleep(0)
        return self._append(collection, doc)

    async def find_one(self, collection, query) -> Optional[dict]:
        await asyncio.sleep(0)
        for row in self.rows(collection):
            if _matches(row, query):
                return copy.deepcopy(row)
        return None

    async def list_all(self, collection, query, sort=None, limit=None):
        await asyncio.sleep(0)
        found = [copy.deepcopy(r) for r in self.rows(collection) if _matches(r, query)]
        for field, direction in reversed(list(sort or [])):
            found.sort(key=lambda r: r[field], reverse=direction < 0)
        return found[:limit] if limit else found

    async def update_where(self, collection, query, patch):
        await asyncio.sleep(0)
        changed = 0
        for row in self.rows(collection):
            if _matches(row, query) and any(row.get(k) != v for k, v in patch.items()):
                row.update(patch)
                changed += 1
        return changed

    async def count(self, collection, query):
        await asyncio.sleep(0)
        return sum(1 for r in self.rows(collection) if _matches(r, query))

    async def subscribe_inserts(self, collection, query, callback):
        queue: asyncio.Queue = asyncio.Queue()
        entry = (collection, dict(query), queue)
        self.listeners.append(entry)

        async def pump() -> None:
            while True:
                doc = await queue.get()
                await deliver(callback, doc)

        task = asyncio.create_task(pump())
        task.add_done_callback(lambda _: self.listeners.remove(entry))
        return Subscription(task)

    async def ping(self) -> bool:
        return True


class BrokenStore(MemoryStore):
    """Fails every write and read after the first ``healthy_calls`` calls."""

    def __init__(self, healthy_calls: int = 0) -> None:
        super().__init__()
        self.healthy_calls = healthy_calls

    async def _trip(self) -> None:
        if self.healthy_calls <= 0:
            raise PersistenceError("connection reset")
        self.healthy_calls -= 1

    async def insert_unique(self, collection, doc, unique_key):
        await self._trip()
        return await super().insert_unique(collection, doc, unique_key)

    async def insert(self, collection, doc):
        await self._trip()
        return await super().insert(collection, doc)

    async def find_one(self, collection, query):
        await self._trip()
        return await super().find_one(collection, query)

    async def list_all(self, collection, query, sort=None, limit=None):
        await self._trip()
        return await super().list_all(collection, query, sort, limit)

    async def ping(self) -> bool:
        return False


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def broken_store() -> BrokenStore:
    return BrokenStore()
