"""
Keyed document store abstraction.

The lifecycle core only needs get/update/append semantics over
tenant-qualified collections. Two implementations exist:
- InMemoryDocumentStore (here): tests and local runs
- SqlDocumentStore (database/document_store.py): SQLAlchemy async backend
"""

import asyncio
import copy
import logging
import uuid
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TableName(str, Enum):
    """Logical collections, qualified per tenant by collection_name()."""

    BOOKING = "bookings"
    BOOKING_LOGS = "bookingLogs"
    PRE_BAN_LOGS = "preBanLogs"
    ROOM_SETTINGS = "roomSettings"


def collection_name(table: TableName, tenant: str | None) -> str:
    """Tenant-qualified collection name, e.g. "mc-bookings"."""
    if not tenant:
        return table.value
    return f"{tenant}-{table.value}"


class DocumentStore(Protocol):
    """Persistence adapter consumed by the lifecycle core."""

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    async def find_one(self, collection: str, field: str, value: Any) -> dict[str, Any] | None:
        ...

    async def query(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        ...

    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]) -> None:
        ...

    async def append(self, collection: str, row: dict[str, Any]) -> str:
        ...

    async def insert(self, collection: str, doc: dict[str, Any]) -> str:
        ...


class InMemoryDocumentStore:
    """
    Dict-backed DocumentStore.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state without going through update().
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def seed(self, collection: str, doc: dict[str, Any]) -> str:
        """Insert a document synchronously (fixtures); returns its id."""
        doc_id = doc.get("id") or uuid.uuid4().hex
        self._collections.setdefault(collection, {})[doc_id] = {**copy.deepcopy(doc), "id": doc_id}
        return doc_id

    def all(self, collection: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def find_one(self, collection: str, field: str, value: Any) -> dict[str, Any] | None:
        for doc in self._collections.get(collection, {}).values():
            if doc.get(field) == value:
                return copy.deepcopy(doc)
        return None

    async def query(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(doc)
            for doc in self._collections.get(collection, {}).values()
            if all(doc.get(key) == expected for key, expected in filters.items())
        ]

    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]) -> None:
        async with self._lock:
            docs = self._collections.setdefault(collection, {})
            if doc_id not in docs:
                raise KeyError(f"Document {doc_id} not found in {collection}")
            docs[doc_id].update(copy.deepcopy(partial))

    async def append(self, collection: str, row: dict[str, Any]) -> str:
        async with self._lock:
            doc_id = uuid.uuid4().hex
            self._collections.setdefault(collection, {})[doc_id] = {**copy.deepcopy(row), "id": doc_id}
            logger.debug("Appended row %s to %s", doc_id, collection)
            return doc_id

    async def insert(self, collection: str, doc: dict[str, Any]) -> str:
        async with self._lock:
            return self.seed(collection, doc)
