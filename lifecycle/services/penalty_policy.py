"""
Penalty policy - late cancellation and no-show violations.

Only user-created bookings are subject to penalties; VIP, walk-in,
admin-created and system-created bookings are exempt. Violations are
recorded as PreBanLog rows, and the per-user count of those rows drives
the penalty messaging.

Window rule for late cancellation (wall-clock hours, floating point):
    hours_to_event <= 24  AND  hours_since_creation > 1
"""

import logging
from datetime import UTC, datetime

from lifecycle.fsm.models import Booking, BookingOrigin, PreBanLog
from shared.document_store import DocumentStore, TableName, collection_name

logger = logging.getLogger(__name__)

LATE_CANCEL_WINDOW_HOURS = 24.0
CREATION_GRACE_HOURS = 1.0


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


def hours_to_event(booking: Booking, now: datetime) -> float | None:
    """Hours from now until the booking starts (negative once started)."""
    if booking.start_date is None:
        return None
    return (_aware(booking.start_date) - _aware(now)).total_seconds() / 3600


def hours_since_creation(booking: Booking, now: datetime) -> float | None:
    """Hours elapsed since the booking was requested."""
    if booking.requested_at is None:
        return None
    return (_aware(now) - _aware(booking.requested_at)).total_seconds() / 3600


def is_policy_violation(booking: Booking | None) -> bool:
    """True only for user-created bookings carrying both startDate and requestedAt."""
    if booking is None:
        return False
    if booking.origin != BookingOrigin.USER:
        return False
    return booking.start_date is not None and booking.requested_at is not None


def is_late_cancel(booking: Booking | None, now: datetime | None = None) -> bool:
    """
    Check whether cancelling now counts as a late cancellation.

    Exactly 24h before the event is inside the window; exactly 1h after
    the request is still inside the grace period.
    """
    if not is_policy_violation(booking):
        return False
    now = now or datetime.now(UTC)
    to_event = hours_to_event(booking, now)
    since_creation = hours_since_creation(booking, now)
    if to_event is None or since_creation is None:
        return False
    return to_event <= LATE_CANCEL_WINDOW_HOURS and since_creation > CREATION_GRACE_HOURS


async def record_late_cancel(
    store: DocumentStore,
    tenant: str | None,
    booking: Booking,
    now: datetime | None = None,
) -> str | None:
    """
    Write a late-cancel PreBanLog row when the cancellation is late.

    Returns:
        New row id, or None when no violation applies
    """
    now = now or datetime.now(UTC)
    if not is_late_cancel(booking, now) or not booking.net_id:
        return None
    row = PreBanLog(net_id=booking.net_id, booking_id=booking.calendar_event_id, late_cancel_date=now)
    row_id = await store.append(collection_name(TableName.PRE_BAN_LOGS, tenant), row.to_document())
    logger.info(
        "Late cancellation recorded | net_id=%s | calendar_event_id=%s",
        booking.net_id,
        booking.calendar_event_id,
    )
    return row_id


async def record_no_show(
    store: DocumentStore,
    tenant: str | None,
    booking: Booking,
    now: datetime | None = None,
) -> str | None:
    """Write a no-show PreBanLog row for policy-bound bookings."""
    if not is_policy_violation(booking) or not booking.net_id:
        logger.info(
            "No-show pre-ban log skipped (exempt booking) | calendar_event_id=%s",
            booking.calendar_event_id,
        )
        return None
    row = PreBanLog(
        net_id=booking.net_id,
        booking_id=booking.calendar_event_id,
        no_show_date=now or datetime.now(UTC),
    )
    return await store.append(collection_name(TableName.PRE_BAN_LOGS, tenant), row.to_document())


async def count_violations(store: DocumentStore, tenant: str | None, net_id: str | None) -> int:
    """Cumulative PreBanLog rows for a user."""
    if not net_id:
        return 0
    rows = await store.query(collection_name(TableName.PRE_BAN_LOGS, tenant), netId=net_id)
    return len(rows)
