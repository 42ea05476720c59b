"""
Test configuration and fixtures.

This module sets up the test environment and provides shared fixtures:
an in-memory document store, mocked email/calendar clients, a frozen
clock and seeding helpers.
"""

import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Must be set BEFORE any imports of database.connection or shared.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["CANCEL_CC_EMAIL"] = ""
os.environ["APPROVAL_CC_EMAIL"] = ""

from lifecycle.services.side_effects import SideEffectOrchestrator  # noqa: E402
from shared.circuit_breaker import reset_breakers  # noqa: E402
from shared.document_store import InMemoryDocumentStore, TableName, collection_name  # noqa: E402
from tests.factories import NOW, TENANT, make_booking_doc, make_room  # noqa: E402


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Every test starts with closed breakers."""
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def email_client() -> MagicMock:
    client = MagicMock()
    client.send = AsyncMock(return_value=None)
    return client


@pytest.fixture
def calendar_client() -> MagicMock:
    client = MagicMock()
    client.update_status = AsyncMock(return_value=None)
    return client


@pytest.fixture
def orchestrator(store, email_client, calendar_client) -> SideEffectOrchestrator:
    return SideEffectOrchestrator(
        store,
        email_client=email_client,
        calendar_client=calendar_client,
        clock=lambda: NOW,
    )


@pytest.fixture
def seed_booking(store):
    """Seed a booking document; returns the stored document."""

    def _seed(calendar_event_id: str = "evt-1", **overrides: Any) -> dict[str, Any]:
        doc = make_booking_doc(calendar_event_id, **overrides)
        store.seed(collection_name(TableName.BOOKING, TENANT), doc)
        return doc

    return _seed


@pytest.fixture
def seed_room(store):
    def _seed(room_id: int = 101, **auto_approval: Any) -> dict[str, Any]:
        room = make_room(room_id, **auto_approval)
        store.seed(collection_name(TableName.ROOM_SETTINGS, TENANT), room)
        return room

    return _seed
