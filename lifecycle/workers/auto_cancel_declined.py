"""
Auto-Cancel Declined Worker - Cancels declined bookings after the grace period.

A declined booking may still be edited and resubmitted by the requester.
Once it has stayed declined for DECLINED_GRACE_PERIOD_HOURS, this worker
cancels it on behalf of "System".

Flow:
1. Query bookings whose mirrored status is DECLINED
2. Keep those whose declinedAt is older than the grace period
3. Send "cancel" through BookingActions (machine path, legacy fallback)

Cancels that follow a decline are automatic and never penalized.
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


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


async def find_expired_declines(
    store: DocumentStore,
    tenant: str,
    now: datetime,
    grace_period: timedelta,
) -> list[Booking]:
    """Declined bookings whose grace period has elapsed."""
    docs = await store.query(collection_name(TableName.BOOKING, tenant), status=StatusLabel.DECLINED.value)
    expired = []
    for doc in docs:
        if status_from_booking(doc) != StatusLabel.DECLINED:
            continue
        booking = Booking.model_validate(doc)
        if booking.declined_at is None:
            logger.warning(f"Declined booking without declinedAt | calendar_event_id={booking.calendar_event_id}")
            continue
        if _aware(now) - _aware(booking.declined_at) >= grace_period:
            expired.append(booking)
    return expired


async def cancel_declined_bookings(
    store: DocumentStore,
    actions: BookingActions | None = None,
    tenant: str | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> list[str]:
    """
    Cancel declined bookings past the grace period.

    Args:
        store: Document store
        actions: Action stack (defaults to the in-process stack over store)
        tenant: Tenant id (defaults to DEFAULT_TENANT)
        now: Current time
        dry_run: Only report what would be canceled

    Returns:
        Calendar event ids canceled (or that would be, on a dry run)
    """
    settings = get_settings()
    tenant = tenant or settings.DEFAULT_TENANT
    now = now or datetime.now(UTC)
    grace_period = timedelta(hours=settings.DECLINED_GRACE_PERIOD_HOURS)

    expired = await find_expired_declines(store, tenant, now, grace_period)
    logger.info(
        f"Found {len(expired)} declined bookings past the {settings.DECLINED_GRACE_PERIOD_HOURS}h "
        f"grace period | tenant={tenant} | dry_run={dry_run}"
    )
    if dry_run:
        return [booking.calendar_event_id for booking in expired]

    actions = actions or build_booking_actions(store)
    canceled: list[str] = []
    for booking in expired:
        try:
            result = await actions.perform(BookingEvent.CANCEL, booking.calendar_event_id, SYSTEM_ACTOR, tenant)
            if result.success:
                canceled.append(booking.calendar_event_id)
            else:
                logger.warning(
                    f"Auto-cancel not applied | calendar_event_id={booking.calendar_event_id} | "
                    f"error={result.error}"
                )
        except Exception as e:
            logger.error(
                f"Error auto-canceling booking {booking.calendar_event_id}: {e}",
                exc_info=True,
            )

    logger.info(f"Auto-cancel run completed | tenant={tenant} | canceled_count={len(canceled)}")
    return canceled


async def run_auto_cancel_worker(store: DocumentStore, tenants: list[str] | None = None) -> None:
    """Run cancel_declined_bookings for every tenant every JOB_INTERVAL_SECONDS."""
    settings = get_settings()
    tenants = tenants or list(settings.TENANT_NAMES)
    logger.info(f"Auto-cancel worker starting | tenants={tenants} | interval={settings.JOB_INTERVAL_SECONDS}s")

    try:
        while True:
            for tenant in tenants:
                try:
                    await cancel_declined_bookings(store, tenant=tenant)
                except Exception as e:
                    logger.exception(f"Error in auto-cancel cycle for tenant {tenant}: {e}")
            await asyncio.sleep(settings.JOB_INTERVAL_SECONDS)
    except asyncio.CancelledError:
        logger.info("Auto-cancel worker shutting down...")


if __name__ == "__main__":
    from database.document_store import SqlDocumentStore
    from shared.logging_config import configure_logging

    configure_logging()
    try:
        asyncio.run(run_auto_cancel_worker(SqlDocumentStore()))
    except KeyboardInterrupt:
        logger.info("Auto-cancel worker stopped by user")
