"""
Side-effect orchestration for accepted transitions.

For every accepted transition, in this order:
1. Skip everything when the serialized snapshot is unchanged
2. Persist status mirror, snapshot and audit timestamps (fatal on failure)
3. Append BookingLog rows, one per entered status (cascades attributed to "System")
4. Send one status email (best effort)
5. PUT the calendar status prefix (best effort)

Email and calendar failures are logged and never roll back the transition.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable

from lifecycle.fsm.models import Booking, MachineSnapshot, XStateData
from lifecycle.fsm.status import MACHINE_STATE_LABELS, MachineState, StatusLabel, label_for_state
from lifecycle.services.booking_repository import SYSTEM_ACTOR, append_log, update_booking
from lifecycle.services.email_messages import header_message
from lifecycle.services.penalty_policy import count_violations, record_late_cancel, record_no_show
from shared.calendar_client import CalendarClient
from shared.circuit_breaker import calendar_breaker, call_with_breaker, email_breaker
from shared.config import get_settings
from shared.document_store import DocumentStore
from shared.email_client import EmailClient

logger = logging.getLogger(__name__)

NO_SHOW_NOTE = "Booking marked as no show"

# Cancels that follow these statuses are automatic, never penalized
AUTOMATIC_CANCEL_NOTES: dict[StatusLabel, str] = {
    StatusLabel.NO_SHOW: "Canceled due to no show",
    StatusLabel.DECLINED: "Canceled after decline",
}

# Audit timestamp (at, by) fields written when a status is entered
STATUS_TIMESTAMP_FIELDS: dict[StatusLabel, tuple[str, str]] = {
    StatusLabel.PENDING: ("firstApprovedAt", "firstApprovedBy"),
    StatusLabel.APPROVED: ("finalApprovedAt", "finalApprovedBy"),
    StatusLabel.DECLINED: ("declinedAt", "declinedBy"),
    StatusLabel.CANCELED: ("canceledAt", "canceledBy"),
    StatusLabel.CHECKED_IN: ("checkedInAt", "checkedInBy"),
    StatusLabel.CHECKED_OUT: ("checkedOutAt", "checkedOutBy"),
    StatusLabel.NO_SHOW: ("noShowedAt", "noShowedBy"),
    StatusLabel.CLOSED: ("closedAt", "closedBy"),
}

# Statuses whose email wins over the cascade target's
PRIMARY_EMAIL_STATUSES = (StatusLabel.NO_SHOW, StatusLabel.CANCELED, StatusLabel.CHECKED_OUT)

# Cleared when an edit sends a declined booking back to Requested
DECLINE_FIELDS = ("declinedAt", "declinedBy", "declineReason")


def cc_email_for(status: StatusLabel) -> str | None:
    """Staff address copied on cancellation and no-show emails, if configured."""
    settings = get_settings()
    if status == StatusLabel.CANCELED:
        return settings.CANCEL_CC_EMAIL or None
    if status == StatusLabel.NO_SHOW:
        return settings.APPROVAL_CC_EMAIL or None
    return None


@dataclass
class CancelAttribution:
    """Who a cancellation is attributed to and whether it may be penalized."""

    changed_by: str
    note: str | None
    automatic: bool


def cancel_attribution(previous_status: str | None, actor: str) -> CancelAttribution:
    """
    Classify a cancellation by the status it follows.

    A cancel right after No-Show or Declined is an automatic cascade:
    attributed to "System", carries a fixed note, excluded from penalties.
    """
    try:
        previous = StatusLabel(previous_status) if previous_status else None
    except ValueError:
        previous = None
    if previous in AUTOMATIC_CANCEL_NOTES:
        return CancelAttribution(SYSTEM_ACTOR, AUTOMATIC_CANCEL_NOTES[previous], automatic=True)
    return CancelAttribution(actor, None, automatic=False)


def serialize_snapshot(snapshot: MachineSnapshot) -> str:
    """Deterministic snapshot serialization used for change detection."""
    return json.dumps(snapshot.to_document(), sort_keys=True, separators=(",", ":"))


def email_contents(booking: Booking) -> dict[str, Any]:
    """Booking fields rendered by the booking_detail template."""
    doc = booking.to_document()
    keys = ("title", "requestNumber", "calendarEventId", "email", "netId", "roomId", "startDate", "endDate")
    return {key: doc[key] for key in keys if key in doc}


@dataclass
class LogEntry:
    """Planned BookingLog row."""

    status: StatusLabel
    changed_by: str
    note: str | None


@dataclass
class SideEffectReport:
    """What apply() actually did."""

    persisted: bool = False
    log_ids: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    email_sent: bool = False
    calendar_updated: bool = False
    violation_recorded: bool = False


class SideEffectOrchestrator:
    """
    Applies the persistent and external effects of accepted transitions.

    Attributes:
        store: Document store holding bookings and logs
        email_client: Email dispatcher client
        calendar_client: Calendar sync client
        notify_in_background: Schedule email/calendar as a task instead of awaiting
    """

    def __init__(
        self,
        store: DocumentStore,
        email_client: EmailClient | None = None,
        calendar_client: CalendarClient | None = None,
        clock: Callable[[], datetime] | None = None,
        notify_in_background: bool = False,
    ) -> None:
        self.store = store
        self.email_client = email_client or EmailClient()
        self.calendar_client = calendar_client or CalendarClient()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.notify_in_background = notify_in_background
        self._background_tasks: set[asyncio.Task] = set()

    async def apply(
        self,
        booking: Booking,
        snapshot: MachineSnapshot,
        entered: list[str],
        previous_status: str | None,
        actor_email: str,
        tenant: str | None,
        note: str | None = None,
        system_attributed: bool = False,
        machine_id: str = "mc-booking",
    ) -> SideEffectReport:
        """
        Persist and announce one accepted transition.

        Args:
            booking: Booking as loaded before the transition
            snapshot: Snapshot after the transition
            entered: Machine states entered by the transition, in order
            previous_status: Status label before the transition (None on creation)
            actor_email: Human actor
            tenant: Tenant id
            note: Note for the first log row
            system_attributed: Attribute every row to "System"

        Returns:
            SideEffectReport

        Raises:
            PersistenceError: If the booking write fails (nothing else is emitted)
        """
        report = SideEffectReport()
        serialized = serialize_snapshot(snapshot)
        if booking.xstate_data is not None and serialize_snapshot(booking.xstate_data.snapshot) == serialized:
            logger.debug(
                "Snapshot unchanged, skipping side effects | calendar_event_id=%s",
                booking.calendar_event_id,
            )
            return report

        now = self.clock()
        entries = self._plan_log_entries(previous_status, entered, actor_email, note, system_attributed, snapshot)
        statuses = [entry.status for entry in entries]
        canceled = bool(booking.canceled_at) or StatusLabel.CANCELED in statuses
        final_status = label_for_state(
            snapshot.value,
            no_showed=bool(booking.no_showed_at) or StatusLabel.NO_SHOW in statuses,
            canceled=canceled,
        )

        partial: dict[str, Any] = {
            "status": str(final_status.value if isinstance(final_status, StatusLabel) else final_status),
            "xstateData": XStateData(
                machine_id=machine_id, last_transition=now, snapshot=snapshot
            ).to_document(),
        }
        for entry in entries:
            fields = STATUS_TIMESTAMP_FIELDS.get(entry.status)
            if fields:
                partial[fields[0]] = now.isoformat()
                partial[fields[1]] = entry.changed_by
        if StatusLabel.DECLINED in statuses:
            partial["declineReason"] = snapshot.context.decline_reason
        elif previous_status is not None and StatusLabel.REQUESTED in statuses and booking.declined_at:
            partial.update(dict.fromkeys(DECLINE_FIELDS))

        await update_booking(self.store, tenant, booking, partial)
        report.persisted = True

        for entry in entries:
            try:
                row_id = await append_log(
                    self.store, tenant, booking, entry.status.value, entry.changed_by, entry.note, now
                )
                report.log_ids.append(row_id)
                report.statuses.append(entry.status.value)
            except Exception as e:
                logger.error(
                    "Failed to append booking log (status already committed) | calendar_event_id=%s | error=%s",
                    booking.calendar_event_id,
                    e,
                )

        if not entries:
            return report

        violation_count = await self._apply_penalties(booking, entries, tenant, now, report)

        email_status = next(
            (entry.status for entry in entries if entry.status in PRIMARY_EMAIL_STATUSES),
            entries[-1].status,
        )
        calendar_status = entries[-1].status
        if calendar_status == StatusLabel.CLOSED and canceled:
            # A canceled booking keeps its CANCELED prefix once closed
            calendar_status = StatusLabel.CANCELED
        reason = snapshot.context.decline_reason if email_status == StatusLabel.DECLINED else None

        notify = self._notify(booking, tenant, email_status, calendar_status, reason, violation_count, now, report)
        if self.notify_in_background:
            task = asyncio.create_task(notify)
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
        else:
            await notify
        return report

    async def annotate(
        self,
        booking: Booking,
        tenant: str | None,
        status: StatusLabel,
        actor_email: str,
        note: str | None = None,
    ) -> str:
        """Append an annotation row (e.g. MODIFIED) without touching state."""
        return await append_log(self.store, tenant, booking, status.value, actor_email, note, self.clock())

    def _plan_log_entries(
        self,
        previous_status: str | None,
        entered: list[str],
        actor_email: str,
        note: str | None,
        system_attributed: bool,
        snapshot: MachineSnapshot,
    ) -> list[LogEntry]:
        entries: list[LogEntry] = []
        prior = previous_status
        for index, state_name in enumerate(entered):
            if state_name == MachineState.SERVICE_CLOSEOUT.value and prior == StatusLabel.CANCELED.value:
                # Closing out services of a canceled booking is not a checkout
                continue
            status = MACHINE_STATE_LABELS[MachineState(state_name)]
            if prior == status.value:
                # Same label (e.g. Pre-approved -> Services Request): nothing new to record
                continue

            changed_by = SYSTEM_ACTOR if (system_attributed or index > 0) else actor_email
            entry_note = note if index == 0 else None

            if status == StatusLabel.NO_SHOW:
                entry_note = entry_note or NO_SHOW_NOTE
            elif status == StatusLabel.CANCELED:
                attribution = cancel_attribution(prior, changed_by)
                changed_by = attribution.changed_by
                entry_note = attribution.note or entry_note
            elif status == StatusLabel.DECLINED:
                entry_note = entry_note or snapshot.context.decline_reason
            entry_note = entry_note or f"Transition to {status.value}"

            entries.append(LogEntry(status, changed_by, entry_note))
            prior = status.value
        return entries

    async def _apply_penalties(
        self,
        booking: Booking,
        entries: list[LogEntry],
        tenant: str | None,
        now: datetime,
        report: SideEffectReport,
    ) -> int | None:
        statuses = [entry.status for entry in entries]
        try:
            if StatusLabel.NO_SHOW in statuses:
                report.violation_recorded = await record_no_show(self.store, tenant, booking, now) is not None
                return await count_violations(self.store, tenant, booking.net_id)
            cancel = next((e for e in entries if e.status == StatusLabel.CANCELED), None)
            if cancel is not None and cancel.changed_by != SYSTEM_ACTOR:
                if await record_late_cancel(self.store, tenant, booking, now) is not None:
                    report.violation_recorded = True
                    return await count_violations(self.store, tenant, booking.net_id)
        except Exception as e:
            logger.error(
                "Failed to record policy violation | calendar_event_id=%s | error=%s",
                booking.calendar_event_id,
                e,
            )
        return None

    async def _notify(
        self,
        booking: Booking,
        tenant: str | None,
        email_status: StatusLabel,
        calendar_status: StatusLabel,
        reason: str | None,
        violation_count: int | None,
        now: datetime,
        report: SideEffectReport,
    ) -> None:
        report.email_sent = await self.send_status_email(
            booking, tenant, email_status, reason, violation_count
        )
        extra = {"end": now.isoformat()} if email_status == StatusLabel.CHECKED_OUT else None
        report.calendar_updated = await self.update_calendar(booking, tenant, calendar_status, extra)

    async def send_status_email(
        self,
        booking: Booking,
        tenant: str | None,
        status: StatusLabel,
        reason: str | None = None,
        violation_count: int | None = None,
    ) -> bool:
        """Send the status email to the guest. Returns False on any failure."""
        if not booking.email:
            logger.warning("No guest email, skipping status email | calendar_event_id=%s", booking.calendar_event_id)
            return False
        message = header_message(status, tenant, reason=reason, violation_count=violation_count)
        contents = email_contents(booking)
        try:
            await call_with_breaker(
                email_breaker, self.email_client.send, booking.email, status.value, message, contents
            )
        except Exception as e:
            logger.warning(
                f"Failed to send {status.value} email for {booking.calendar_event_id} "
                f"(status already committed): {e}"
            )
            return False

        cc_email = cc_email_for(status)
        if cc_email:
            try:
                await call_with_breaker(
                    email_breaker, self.email_client.send, cc_email, status.value, message, contents
                )
            except Exception as e:
                logger.warning(f"Failed to send {status.value} copy to {cc_email}: {e}")
        return True

    async def update_calendar(
        self,
        booking: Booking,
        tenant: str | None,
        status: StatusLabel,
        extra_values: dict[str, Any] | None = None,
    ) -> bool:
        """PUT the calendar status prefix. Returns False on any failure."""
        try:
            await call_with_breaker(
                calendar_breaker,
                self.calendar_client.update_status,
                booking.calendar_event_id,
                status.value,
                tenant,
                extra_values,
            )
            return True
        except Exception as e:
            logger.warning(
                f"Failed to update calendar for {booking.calendar_event_id} "
                f"(status already committed): {e}"
            )
            return False
