"""
Persistence contract used by the like resolver and the conversation gate.

Documents are plain dicts keyed by field name with a string ``_id``. Queries
are equality filters; a query value matches an array field when the array
contains it (MongoDB semantics).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Query = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]
InsertCallback = Callable[[Document], Union[None, Awaitable[None]]]

ASCENDING = 1
DESCENDING = -1


class PersistenceError(Exception):
    """Storage or transport failure underneath a Store call."""


@dataclass(frozen=True)
class Inserted:
    doc: Document


@dataclass(frozen=True)
class AlreadyExists:
    unique_key: Tuple[str, ...]


InsertResult = Union[Inserted, AlreadyExists]


async def deliver(callback: InsertCallback, doc: Document) -> None:
    """Hand one inserted document to a listener; a failing listener stays subscribed."""
    try:
        result = callback(doc)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("subscription: listener failed on %s", doc.get("_id"))


class Subscription:
    """Handle for a running insert listener.

    Usable as an async context manager: leaving the block cancels delivery and
    releases the underlying channel.
    """

    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    async def cancel(self) -> None:
        if self._task.done():
            if not self._task.cancelled() and self._task.exception() is not None:
                logger.warning("subscription: listener stopped early", exc_info=self._task.exception())
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()


class Store:
    """Abstract storage collaborator.

    ``insert_unique`` must enforce ``unique_key`` atomically: of any number of
    concurrent inserts sharing the key values, exactly one gets ``Inserted``.
    Every method raises :class:`PersistenceError` on storage failure.
    """

    async def insert_unique(self, collection: str, doc: Document, unique_key: Tuple[str, ...]) -> InsertResult:
        raise NotImplementedError

    async def insert(self, collection: str, doc: Document) -> Document:
        raise NotImplementedError

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        raise NotImplementedError

    async def list_all(
        self,
        collection: str,
        query: Query,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        raise NotImplementedError

    async def update_where(self, collection: str, query: Query, patch: Document) -> int:
        """Apply ``patch`` to every matching document; return how many changed."""
        raise NotImplementedError

    async def count(self, collection: str, query: Query) -> int:
        raise NotImplementedError

    async def subscribe_inserts(self, collection: str, query: Query, callback: InsertCallback) -> Subscription:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError
