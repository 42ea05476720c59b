"""
Legacy fallback - imperative status updates without the booking machine.

Used when the transition gateway fails. Each action writes the flat
timestamp fields directly, appends the same BookingLog row, sends the same
class of email and issues the same calendar PUT as the machine path, so
the outcome the user sees does not depend on the machine being reachable.
Cancel and no-show also close the booking as "System" unless approved
services still need closeout.

The stale machine snapshot is dropped; the next machine-path transition
rebuilds the machine from the flat status with auto-approval disabled.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Callable

from lifecycle.fsm.models import Booking, BookingEvent
from lifecycle.fsm.service_tracks import ServiceTracks
from lifecycle.fsm.status import MachineState, StatusLabel, status_from_booking
from lifecycle.services.booking_repository import (
    SYSTEM_ACTOR,
    append_log,
    get_booking,
    get_logs,
    update_booking,
)
from lifecycle.services.penalty_policy import count_violations, record_late_cancel, record_no_show
from lifecycle.services.side_effects import (
    AUTOMATIC_CANCEL_NOTES,
    NO_SHOW_NOTE,
    SideEffectOrchestrator,
    cancel_attribution,
)
from lifecycle.services.transition_gateway import TransitionResult
from shared.document_store import DocumentStore

logger = logging.getLogger(__name__)

# Machine states that prove the remote machine processed a noShow
NO_SHOW_REACHED_STATES = (
    MachineState.NO_SHOW.value,
    MachineState.CANCELED.value,
    MachineState.SERVICE_CLOSEOUT.value,
    MachineState.CLOSED.value,
)

CLOSED_NOTE = f"Transition to {StatusLabel.CLOSED.value}"


def reached_no_show(failed: TransitionResult | None) -> bool:
    """True when a failed gateway result reports the machine reached No Show."""
    return failed is not None and failed.new_state in NO_SHOW_REACHED_STATES


def needs_service_closeout(booking: Booking) -> bool:
    """
    True when approved services must be closed out before the booking closes.

    Read from the last snapshot when there is one; legacy bookings count
    their requested services as approved once the booking was approved.
    """
    if booking.xstate_data is not None:
        tracks = ServiceTracks.from_context(booking.xstate_data.snapshot.context)
        return bool(tracks.closeout_required)
    status = status_from_booking(booking.to_document())
    return status in (StatusLabel.APPROVED, StatusLabel.CHECKED_IN) and any(booking.requested_services().values())


class LegacyFallbackProcessor:
    """
    Direct-mutation equivalent of the machine path for core actions.

    Attributes:
        store: Document store holding bookings and logs
        orchestrator: Source of the email and calendar helpers shared with
            the machine path
    """

    def __init__(
        self,
        store: DocumentStore,
        orchestrator: SideEffectOrchestrator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator or SideEffectOrchestrator(store)
        self.clock = clock or (lambda: datetime.now(UTC))

    async def process(
        self,
        event: BookingEvent | str,
        calendar_event_id: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
        failed: TransitionResult | None = None,
    ) -> TransitionResult:
        """
        Apply an action directly to the booking document.

        Args:
            event: approve, decline, cancel, checkIn, checkOut or noShow
            calendar_event_id: Booking key
            actor_email: Human actor
            tenant: Tenant id
            reason: Decline reason or cancel note
            failed: The gateway failure being recovered

        Returns:
            TransitionResult with via_fallback=True, or the gateway failure
            unchanged when the action has no fallback

        Raises:
            BookingNotFoundError: Unknown booking
            PersistenceError: Status write failed
        """
        try:
            booking_event = BookingEvent(event)
        except ValueError:
            return failed or TransitionResult.failure(f"Unknown event '{event}'")

        handlers = {
            BookingEvent.APPROVE: self._approve,
            BookingEvent.DECLINE: self._decline,
            BookingEvent.CANCEL: self._cancel,
            BookingEvent.CHECK_IN: self._check_in,
            BookingEvent.CHECK_OUT: self._check_out,
            BookingEvent.NO_SHOW: self._no_show,
        }
        handler = handlers.get(booking_event)
        if handler is None:
            logger.warning(
                "No legacy fallback for event=%s | calendar_event_id=%s",
                booking_event.value,
                calendar_event_id,
            )
            return failed or TransitionResult.failure(f"No fallback for '{booking_event.value}'")

        if booking_event == BookingEvent.NO_SHOW and not reached_no_show(failed):
            logger.warning(
                "Skipping no-show fallback, machine never reached No Show | calendar_event_id=%s",
                calendar_event_id,
            )
            return failed or TransitionResult.failure("No-show not confirmed by the machine")

        booking = await get_booking(self.store, calendar_event_id, tenant)
        logger.info(
            "Legacy fallback: event=%s | calendar_event_id=%s | gateway_error=%s",
            booking_event.value,
            calendar_event_id,
            failed.error if failed else None,
        )
        return await handler(booking, actor_email, tenant, reason)

    async def _approve(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        current = status_from_booking(booking.to_document())
        if current == StatusLabel.REQUESTED:
            # First approval (liaison)
            return await self._set_status(
                booking, tenant, StatusLabel.PENDING, actor,
                {"firstApprovedAt": self._now(), "firstApprovedBy": actor},
                new_state=MachineState.PRE_APPROVED,
            )
        if current == StatusLabel.PENDING:
            return await self._set_status(
                booking, tenant, StatusLabel.APPROVED, actor,
                {"finalApprovedAt": self._now(), "finalApprovedBy": actor},
                new_state=MachineState.APPROVED,
            )
        return TransitionResult.rejection(f"Cannot approve a booking in status {current}")

    async def _decline(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        return await self._set_status(
            booking, tenant, StatusLabel.DECLINED, actor,
            {"declinedAt": self._now(), "declinedBy": actor, "declineReason": reason},
            new_state=MachineState.DECLINED,
            note=reason,
            email_reason=reason,
        )

    async def _cancel(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        logs = await get_logs(self.store, tenant, calendar_event_id=booking.calendar_event_id)
        previous = next(
            (log.status for log in reversed(logs) if log.status != StatusLabel.CANCELED.value),
            None,
        )
        if previous is None:
            current = status_from_booking(booking.to_document())
            previous = current.value if isinstance(current, StatusLabel) else current
        attribution = cancel_attribution(previous, actor)

        violation_count = None
        if not attribution.automatic:
            try:
                if await record_late_cancel(self.store, tenant, booking, self.clock()) is not None:
                    violation_count = await count_violations(self.store, tenant, booking.net_id)
            except Exception as e:
                logger.error(
                    "Failed to record late cancellation | calendar_event_id=%s | error=%s",
                    booking.calendar_event_id,
                    e,
                )
        else:
            logger.info(
                "Automatic cancel after %s, no penalty | calendar_event_id=%s",
                previous,
                booking.calendar_event_id,
            )

        return await self._set_status(
            booking, tenant, StatusLabel.CANCELED, attribution.changed_by,
            {"canceledAt": self._now(), "canceledBy": attribution.changed_by},
            new_state=MachineState.CANCELED,
            note=attribution.note or reason,
            violation_count=violation_count,
            close=not needs_service_closeout(booking),
        )

    async def _check_in(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        return await self._set_status(
            booking, tenant, StatusLabel.CHECKED_IN, actor,
            {"checkedInAt": self._now(), "checkedInBy": actor},
            new_state=MachineState.CHECKED_IN,
        )

    async def _check_out(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        now = self._now()
        return await self._set_status(
            booking, tenant, StatusLabel.CHECKED_OUT, actor,
            {"checkedOutAt": now, "checkedOutBy": actor},
            new_state=MachineState.CHECKED_OUT,
            calendar_extra={"end": now},
        )

    async def _no_show(self, booking: Booking, actor: str, tenant: str | None, reason: str | None) -> TransitionResult:
        now = self.clock()
        violation_count = None
        try:
            await record_no_show(self.store, tenant, booking, now)
            violation_count = await count_violations(self.store, tenant, booking.net_id)
        except Exception as e:
            logger.error(
                "Failed to record no-show | calendar_event_id=%s | error=%s",
                booking.calendar_event_id,
                e,
            )

        close = not needs_service_closeout(booking)
        stamp = now.isoformat()
        fields = {
            "status": StatusLabel.CANCELED.value,
            "xstateData": None,
            "noShowedAt": stamp,
            "noShowedBy": actor,
            "canceledAt": stamp,
            "canceledBy": SYSTEM_ACTOR,
        }
        if close:
            fields.update({"closedAt": stamp, "closedBy": SYSTEM_ACTOR})
        await update_booking(self.store, tenant, booking, fields)
        await self._log(booking, tenant, StatusLabel.NO_SHOW, actor, reason or NO_SHOW_NOTE, now)
        await self._log(
            booking, tenant, StatusLabel.CANCELED, SYSTEM_ACTOR,
            AUTOMATIC_CANCEL_NOTES[StatusLabel.NO_SHOW], now,
        )
        if close:
            await self._log(booking, tenant, StatusLabel.CLOSED, SYSTEM_ACTOR, CLOSED_NOTE, now)

        await self.orchestrator.send_status_email(
            booking, tenant, StatusLabel.NO_SHOW, violation_count=violation_count
        )
        await self.orchestrator.update_calendar(booking, tenant, StatusLabel.CANCELED)
        entered = [MachineState.NO_SHOW.value, MachineState.CANCELED.value]
        if close:
            entered.append(MachineState.CLOSED.value)
        return TransitionResult.ok(entered[-1], entered=entered, via_fallback=True)

    async def _set_status(
        self,
        booking: Booking,
        tenant: str | None,
        status: StatusLabel,
        changed_by: str,
        fields: dict[str, Any],
        new_state: MachineState,
        note: str | None = None,
        email_reason: str | None = None,
        violation_count: int | None = None,
        calendar_extra: dict[str, Any] | None = None,
        close: bool = False,
    ) -> TransitionResult:
        now = self.clock()
        partial = {"status": status.value, "xstateData": None, **fields}
        if close:
            partial.update({"closedAt": now.isoformat(), "closedBy": SYSTEM_ACTOR})
        await update_booking(self.store, tenant, booking, partial)
        await self._log(booking, tenant, status, changed_by, note or f"Transition to {status.value}", now)
        if close:
            await self._log(booking, tenant, StatusLabel.CLOSED, SYSTEM_ACTOR, CLOSED_NOTE, now)
        await self.orchestrator.send_status_email(
            booking, tenant, status, reason=email_reason, violation_count=violation_count
        )
        await self.orchestrator.update_calendar(booking, tenant, status, calendar_extra)
        entered = [new_state.value]
        if close:
            entered.append(MachineState.CLOSED.value)
        return TransitionResult.ok(entered[-1], entered=entered, via_fallback=True)

    async def _log(
        self,
        booking: Booking,
        tenant: str | None,
        status: StatusLabel,
        changed_by: str,
        note: str | None,
        now: datetime,
    ) -> None:
        try:
            await append_log(self.store, tenant, booking, status.value, changed_by, note, now)
        except Exception as e:
            logger.error(
                "Failed to append booking log (status already committed) | calendar_event_id=%s | error=%s",
                booking.calendar_event_id,
                e,
            )

    def _now(self) -> str:
        return self.clock().isoformat()
