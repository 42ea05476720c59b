"""
Booking document access on top of a DocumentStore.

Wraps the tenant-qualified collections used by the lifecycle core:
bookings (looked up by calendarEventId), bookingLogs, preBanLogs and
roomSettings. Status-bearing writes raise PersistenceError on failure.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from lifecycle.exceptions import BookingNotFoundError, PersistenceError
from lifecycle.fsm.models import Booking, BookingLog, RoomSetting
from shared.document_store import DocumentStore, TableName, collection_name

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "System"


async def get_booking(store: DocumentStore, calendar_event_id: str, tenant: str | None) -> Booking:
    """
    Load a booking by its calendar event id.

    Raises:
        BookingNotFoundError: If no booking matches
    """
    doc = await store.find_one(
        collection_name(TableName.BOOKING, tenant), "calendarEventId", calendar_event_id
    )
    if doc is None:
        raise BookingNotFoundError(calendar_event_id, tenant)
    return Booking.model_validate(doc)


async def update_booking(
    store: DocumentStore,
    tenant: str | None,
    booking: Booking,
    partial: dict[str, Any],
) -> None:
    """
    Apply a partial update to a booking document.

    Raises:
        PersistenceError: If the store write fails
    """
    try:
        await store.update(collection_name(TableName.BOOKING, tenant), booking.id, partial)
    except Exception as e:
        logger.error(
            "Booking update failed | calendar_event_id=%s | error=%s",
            booking.calendar_event_id,
            e,
            exc_info=True,
        )
        raise PersistenceError(
            f"Failed to update booking {booking.calendar_event_id}", original_error=e
        ) from e


async def append_log(
    store: DocumentStore,
    tenant: str | None,
    booking: Booking,
    status: str,
    changed_by: str,
    note: str | None = None,
    changed_at: datetime | None = None,
) -> str:
    """Append one BookingLog row; returns its id."""
    row = BookingLog(
        booking_id=booking.id,
        calendar_event_id=booking.calendar_event_id,
        status=status,
        changed_by=changed_by,
        changed_at=changed_at or datetime.now(UTC),
        note=note,
        request_number=booking.request_number,
    )
    return await store.append(collection_name(TableName.BOOKING_LOGS, tenant), row.to_document())


async def get_logs(
    store: DocumentStore,
    tenant: str | None,
    calendar_event_id: str | None = None,
    request_number: int | None = None,
) -> list[BookingLog]:
    """BookingLog rows for a booking, oldest first."""
    filters: dict[str, Any] = {}
    if calendar_event_id is not None:
        filters["calendarEventId"] = calendar_event_id
    if request_number is not None:
        filters["requestNumber"] = request_number
    rows = await store.query(collection_name(TableName.BOOKING_LOGS, tenant), **filters)
    logs = [BookingLog.model_validate(row) for row in rows]
    return sorted(logs, key=lambda log: log.changed_at)


async def get_room_settings(
    store: DocumentStore, tenant: str | None, room_ids: list[str]
) -> list[RoomSetting]:
    """Room settings for the selected rooms (unknown rooms have no auto-approval)."""
    rooms: list[RoomSetting] = []
    collection = collection_name(TableName.ROOM_SETTINGS, tenant)
    for room_id in room_ids:
        doc = await store.find_one(collection, "roomId", _room_key(room_id))
        rooms.append(RoomSetting.model_validate(doc) if doc else RoomSetting(room_id=room_id))
    return rooms


def _room_key(room_id: str) -> int | str:
    return int(room_id) if room_id.isdigit() else room_id


def selected_room_ids(booking: Booking) -> list[str]:
    """Room ids from the comma separated roomId field."""
    if not booking.room_id:
        return []
    return [part.strip() for part in booking.room_id.split(",") if part.strip()]
