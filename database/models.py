"""
SQLAlchemy ORM models.

The lifecycle core treats persistence as a keyed document store, so a single
table holds every tenant-qualified collection:

- documents: (collection, id) -> JSON document body

Bookings, BookingLog rows, PreBanLog rows and room settings all live here,
distinguished by collection name ("mc-bookings", "mc-bookingLogs", ...).
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Document(Base):
    """One JSON document in a named collection."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(128), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("idx_documents_collection", "collection"),)

    def __repr__(self) -> str:
        return f"<Document(collection={self.collection}, id={self.id})>"
