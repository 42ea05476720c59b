"""
SQLAlchemy-backed DocumentStore.

Stores every collection in the documents table (see database.models).
Field lookups compare against the JSON body; scalar string, integer and
boolean values are filtered in SQL, anything else in Python.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Document

logger = logging.getLogger(__name__)


class SqlDocumentStore:
    """DocumentStore over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from database.connection import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    @staticmethod
    def _field_clause(field: str, value: Any):
        column = Document.data[field]
        if isinstance(value, bool):
            return column.as_boolean() == value
        if isinstance(value, int):
            return column.as_integer() == value
        if isinstance(value, str):
            return column.as_string() == value
        return None

    async def _select(self, collection: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        stmt = select(Document).where(Document.collection == collection)
        python_filters: dict[str, Any] = {}
        for field, value in filters.items():
            clause = self._field_clause(field, value)
            if clause is None:
                python_filters[field] = value
            else:
                stmt = stmt.where(clause)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        docs = [{**row.data, "id": row.id} for row in rows]
        return [
            doc for doc in docs
            if all(doc.get(key) == expected for key, expected in python_filters.items())
        ]

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await session.get(Document, (collection, doc_id))
            if row is None:
                return None
            return {**row.data, "id": row.id}

    async def find_one(self, collection: str, field: str, value: Any) -> dict[str, Any] | None:
        docs = await self._select(collection, {field: value})
        return docs[0] if docs else None

    async def query(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        return await self._select(collection, filters)

    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            row = await session.get(Document, (collection, doc_id), with_for_update=True)
            if row is None:
                raise KeyError(f"Document {doc_id} not found in {collection}")
            # Reassign so the JSON column is marked dirty
            row.data = {**row.data, **partial}
            await session.commit()

    async def append(self, collection: str, row: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        async with self._session_factory() as session:
            session.add(Document(collection=collection, id=doc_id, data=dict(row)))
            await session.commit()
        logger.debug("Appended row %s to %s", doc_id, collection)
        return doc_id

    async def insert(self, collection: str, doc: dict[str, Any]) -> str:
        """Insert a document with a caller-chosen id (booking creation)."""
        doc_id = doc.get("id") or uuid.uuid4().hex
        data = {key: value for key, value in doc.items() if key != "id"}
        async with self._session_factory() as session:
            session.add(Document(collection=collection, id=doc_id, data=data))
            await session.commit()
        return doc_id
