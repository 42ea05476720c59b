"""
Transition service - server side of the transition gateway.

Loads the booking, restores its machine (from the persisted snapshot, or
from the legacy flat status for bookings that predate snapshots), applies
the event and hands accepted transitions to the SideEffectOrchestrator.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from lifecycle.exceptions import InvalidEventError, PersistenceError
from lifecycle.fsm.booking_machine import BookingStateMachine
from lifecycle.fsm.models import Booking, BookingEvent, MachineContext
from lifecycle.fsm.status import MachineState, StatusLabel, status_from_booking
from lifecycle.services.booking_repository import (
    SYSTEM_ACTOR,
    get_booking,
    get_room_settings,
    selected_room_ids,
)
from lifecycle.services.side_effects import SideEffectOrchestrator
from lifecycle.services.transition_gateway import TransitionResult
from shared.document_store import DocumentStore, TableName, collection_name

logger = logging.getLogger(__name__)

EDIT_NOTE = "Booking edited by user"
MODIFY_NOTE = "Booking modified"

# Events that carry edited booking fields, with the row they annotate
# self-transitions with
ANNOTATIONS: dict[BookingEvent, tuple[StatusLabel, str]] = {
    BookingEvent.EDIT: (StatusLabel.REQUESTED, EDIT_NOTE),
    BookingEvent.MODIFY: (StatusLabel.MODIFIED, MODIFY_NOTE),
}


class TransitionService:
    """Applies events to bookings through the booking machine."""

    def __init__(self, store: DocumentStore, orchestrator: SideEffectOrchestrator | None = None):
        self.store = store
        self.orchestrator = orchestrator or SideEffectOrchestrator(store)

    async def build_context(self, booking: Booking, tenant: str | None) -> MachineContext:
        """Machine context for a booking: origin flags, rooms, duration, services."""
        rooms = await get_room_settings(self.store, tenant, selected_room_ids(booking))
        return MachineContext(
            tenant=tenant,
            calendar_event_id=booking.calendar_event_id,
            email=booking.email,
            is_vip=booking.is_vip,
            is_walk_in=booking.is_walk_in,
            role=booking.role,
            duration_hours=booking.duration_hours,
            selected_rooms=rooms,
            services_requested={key: True for key, wanted in booking.requested_services().items() if wanted},
        )

    async def load_machine(self, booking: Booking, tenant: str | None) -> BookingStateMachine:
        """Restore from the snapshot, or rebuild from the legacy status."""
        if booking.xstate_data is not None:
            return BookingStateMachine.restore(booking.xstate_data.snapshot, booking.xstate_data.machine_id)

        label = status_from_booking(booking.to_document())
        logger.info(
            "No snapshot, restoring machine from legacy status %s | calendar_event_id=%s",
            label,
            booking.calendar_event_id,
        )
        return BookingStateMachine.from_legacy_status(await self.build_context(booking, tenant), label)

    async def create_booking(
        self, booking: Booking, tenant: str | None, actor_email: str | None = None
    ) -> TransitionResult:
        """
        Insert a new booking and run the machine's initial entry.

        Bookings that pass the auto-approval guard go straight to Approved
        (or Services Request for VIP bookings with services).

        Raises:
            PersistenceError: If the insert or the status write fails
        """
        if booking.requested_at is None:
            booking.requested_at = datetime.now(UTC)
        booking.xstate_data = None

        try:
            await self.store.insert(collection_name(TableName.BOOKING, tenant), booking.to_document())
        except Exception as e:
            raise PersistenceError(f"Failed to insert booking {booking.calendar_event_id}", original_error=e) from e

        machine = BookingStateMachine.create(await self.build_context(booking, tenant))
        if machine.last_auto_approval is not None:
            logger.info(
                "Auto-approval evaluated: %s | calendar_event_id=%s",
                machine.last_auto_approval.reason,
                booking.calendar_event_id,
            )

        await self.orchestrator.apply(
            booking,
            machine.snapshot(),
            machine.entered,
            previous_status=None,
            actor_email=actor_email or booking.email or SYSTEM_ACTOR,
            tenant=tenant,
            machine_id=machine.machine_id,
        )
        return TransitionResult.ok(machine.state.value, entered=machine.entered)

    async def transition(
        self,
        calendar_event_id: str,
        event_type: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Apply one event to a booking.

        Returns:
            TransitionResult; a rejected result when the event is not valid
            from the current state (nothing is written)

        Raises:
            InvalidEventError: Unknown event name
            BookingNotFoundError: No booking for calendar_event_id
            PersistenceError: Status write failed (new_state carries the
                state the machine reached)
        """
        try:
            event = BookingEvent(event_type)
        except ValueError:
            raise InvalidEventError(f"Unknown event type '{event_type}'") from None

        booking = await get_booking(self.store, calendar_event_id, tenant)
        machine = await self.load_machine(booking, tenant)
        previous_status = status_from_booking(booking.to_document())

        annotation = ANNOTATIONS.get(event)
        if annotation is not None:
            # Guards must see the edited rooms, duration and services
            machine.refresh_context(
                await self.build_context(booking, tenant),
                include_services=event == BookingEvent.EDIT,
            )

        result = machine.send(event, reason=reason)
        if not result.success:
            return TransitionResult.rejection(result.error or "Transition rejected", result.previous_state)

        # Closing after the last service closeout is a cascade, not a human action
        closed_by_closeout = (
            event.service_action is not None
            and event.service_action[0] == "closeout"
            and machine.state == MachineState.CLOSED
        )

        note = reason
        if event == BookingEvent.EDIT:
            note = reason or EDIT_NOTE

        try:
            report = await self.orchestrator.apply(
                booking,
                machine.snapshot(),
                result.entered,
                previous_status=str(previous_status.value if isinstance(previous_status, StatusLabel) else previous_status),
                actor_email=actor_email,
                tenant=tenant,
                note=note,
                system_attributed=actor_email == SYSTEM_ACTOR or closed_by_closeout,
                machine_id=machine.machine_id,
            )
        except PersistenceError as e:
            e.new_state = result.new_state
            raise

        # Self-transitions enter no state; record the edit only when it changed something
        if annotation is not None and report.persisted and not result.entered:
            status, default_note = annotation
            try:
                await self.orchestrator.annotate(booking, tenant, status, actor_email, reason or default_note)
            except Exception as e:
                logger.error(
                    "Failed to write %s log | calendar_event_id=%s | error=%s",
                    status.value,
                    calendar_event_id,
                    e,
                )

        return TransitionResult.ok(result.new_state, entered=result.entered)

    async def describe(self, calendar_event_id: str, tenant: str | None) -> dict[str, Any]:
        """Current state, status label and accepted events of a booking."""
        booking = await get_booking(self.store, calendar_event_id, tenant)
        machine = await self.load_machine(booking, tenant)
        status = status_from_booking(booking.to_document())
        return {
            "calendarEventId": calendar_event_id,
            "currentState": machine.state.value,
            "status": status.value if isinstance(status, StatusLabel) else status,
            "availableEvents": machine.available_events(),
        }
