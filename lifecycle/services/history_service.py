"""Booking history by request number, with reconstruction for legacy bookings."""

import logging
from datetime import datetime

from lifecycle.fsm.models import Booking, BookingLog
from lifecycle.fsm.status import StatusLabel
from lifecycle.services.booking_repository import get_logs
from shared.document_store import DocumentStore, TableName, collection_name

logger = logging.getLogger(__name__)

WALK_IN_ACTOR = "PA"

# (timestamp attribute, actor attribute, status) used to rebuild history
LEGACY_HISTORY_FIELDS: tuple[tuple[str, str | None, StatusLabel], ...] = (
    ("requested_at", "email", StatusLabel.REQUESTED),
    ("first_approved_at", "first_approved_by", StatusLabel.PENDING),
    ("final_approved_at", "final_approved_by", StatusLabel.APPROVED),
    ("declined_at", "declined_by", StatusLabel.DECLINED),
    ("canceled_at", "canceled_by", StatusLabel.CANCELED),
    ("checked_in_at", "checked_in_by", StatusLabel.CHECKED_IN),
    ("checked_out_at", "checked_out_by", StatusLabel.CHECKED_OUT),
    ("no_showed_at", "no_showed_by", StatusLabel.NO_SHOW),
    ("closed_at", "closed_by", StatusLabel.CLOSED),
    ("walked_in_at", None, StatusLabel.WALK_IN),
)


async def get_booking_history(
    store: DocumentStore, tenant: str | None, request_number: int
) -> list[BookingLog]:
    """
    History rows for a booking, oldest first.

    Bookings created before the history log existed have no rows; their
    history is rebuilt from the audit timestamps instead.
    """
    logs = await get_logs(store, tenant, request_number=request_number)
    if logs:
        return logs

    doc = await store.find_one(collection_name(TableName.BOOKING, tenant), "requestNumber", request_number)
    if doc is None:
        return []

    logger.info("Reconstructing history from timestamps | request_number=%s", request_number)
    return reconstruct_history(Booking.model_validate(doc))


def reconstruct_history(booking: Booking) -> list[BookingLog]:
    """BookingLog-shaped rows derived from a booking's timestamp pairs."""
    rows: list[BookingLog] = []
    for at_field, by_field, status in LEGACY_HISTORY_FIELDS:
        changed_at: datetime | None = getattr(booking, at_field)
        if changed_at is None:
            continue
        if status == StatusLabel.WALK_IN:
            changed_by = WALK_IN_ACTOR
        else:
            changed_by = (getattr(booking, by_field) if by_field else None) or ""
        note = booking.decline_reason if status == StatusLabel.DECLINED else None
        rows.append(
            BookingLog(
                booking_id=booking.id,
                calendar_event_id=booking.calendar_event_id,
                status=status.value,
                changed_by=changed_by,
                changed_at=changed_at,
                note=note,
                request_number=booking.request_number,
            )
        )
    return sorted(rows, key=lambda row: row.changed_at)
