"""
Auto-Checkout Worker - Checks out bookings nobody checked out.

Checked-in bookings whose end time passed more than
AUTO_CHECKOUT_DELAY_MINUTES ago receive a "checkOut" from "System". The
machine then closes the booking or moves it to service closeout.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from lifecycle.fsm.models import Booking, BookingEvent
from lifecycle.fsm.status import StatusLabel, status_from_booking
from lifecycle.services.booking_actions import BookingActions, build_booking_actions
from lifecycle.services.booking_repository import SYSTEM_ACTOR
from shared.config import get_settings
from shared.document_store import DocumentStore, TableName, collection_name

logger = logging.getLogger(__name__)

AUTO_CHECKOUT_NOTE = "Auto-checkout by system"


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


async def find_overdue_checkins(store: DocumentStore, tenant: str, now: datetime, delay: timedelta) -> list[Booking]:
    docs = await store.query(collection_name(TableName.BOOKING, tenant), status=StatusLabel.CHECKED_IN.value)
    overdue = []
    for doc in docs:
        if status_from_booking(doc) != StatusLabel.CHECKED_IN:
            continue
        booking = Booking.model_validate(doc)
        if booking.end_date is not None and _aware(now) >= _aware(booking.end_date) + delay:
            overdue.append(booking)
    return overdue


async def checkout_overdue_bookings(
    store: DocumentStore,
    actions: BookingActions | None = None,
    tenant: str | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> list[str]:
    """
    Check out bookings still checked in after their end time plus the delay.

    Returns:
        Calendar event ids checked out (or that would be, on a dry run)
    """
    settings = get_settings()
    tenant = tenant or settings.DEFAULT_TENANT
    now = now or datetime.now(UTC)
    delay = timedelta(minutes=settings.AUTO_CHECKOUT_DELAY_MINUTES)

    overdue = await find_overdue_checkins(store, tenant, now, delay)
    logger.info(f"Found {len(overdue)} overdue checked-in bookings | tenant={tenant} | dry_run={dry_run}")
    if dry_run:
        return [booking.calendar_event_id for booking in overdue]

    actions = actions or build_booking_actions(store)
    checked_out: list[str] = []
    for booking in overdue:
        try:
            result = await actions.perform(
                BookingEvent.CHECK_OUT, booking.calendar_event_id, SYSTEM_ACTOR, tenant, AUTO_CHECKOUT_NOTE
            )
            if result.success:
                checked_out.append(booking.calendar_event_id)
            else:
                logger.warning(
                    f"Auto-checkout not applied | calendar_event_id={booking.calendar_event_id} | "
                    f"error={result.error}"
                )
        except Exception as e:
            logger.error(f"Error auto-checking out booking {booking.calendar_event_id}: {e}", exc_info=True)

    logger.info(f"Auto-checkout run completed | tenant={tenant} | checked_out_count={len(checked_out)}")
    return checked_out


async def run_auto_checkout_worker(store: DocumentStore, tenants: list[str] | None = None) -> None:
    settings = get_settings()
    tenants = tenants or list(settings.TENANT_NAMES)
    logger.info(f"Auto-checkout worker starting | tenants={tenants}")

    try:
        while True:
            for tenant in tenants:
                try:
                    await checkout_overdue_bookings(store, tenant=tenant)
                except Exception as e:
                    logger.exception(f"Error in auto-checkout cycle for tenant {tenant}: {e}")
            await asyncio.sleep(settings.JOB_INTERVAL_SECONDS)
    except asyncio.CancelledError:
        logger.info("Auto-checkout worker shutting down...")


if __name__ == "__main__":
    from database.document_store import SqlDocumentStore
    from shared.logging_config import configure_logging

    configure_logging()
    try:
        asyncio.run(run_auto_checkout_worker(SqlDocumentStore()))
    except KeyboardInterrupt:
        logger.info("Auto-checkout worker stopped by user")
