"""
BookingSession - per-booking actor lifecycle for a caller.

    async with BookingSession(store, "evt-1", "mc", actions, service) as session:
        session.subscribe(on_change)
        await session.send_event("approve", "admin@example.edu")

Entering restores the machine from the persisted snapshot (or builds one
from the legacy status and persists it). Events go through BookingActions,
so gateway failures fall back to the legacy path. Subscribers are notified
only when the serialized snapshot actually changes. Exiting disposes the
session and drops all subscribers.
"""

import logging
from datetime import UTC, datetime
from typing import Callable

from lifecycle.exceptions import BookingLifecycleError
from lifecycle.fsm.booking_machine import BookingStateMachine
from lifecycle.fsm.models import Booking, BookingEvent, MachineSnapshot, XStateData
from lifecycle.services.booking_actions import BookingActions
from lifecycle.services.booking_repository import get_booking, update_booking
from lifecycle.services.side_effects import serialize_snapshot
from lifecycle.services.transition_gateway import TransitionResult
from lifecycle.services.transition_service import TransitionService
from shared.document_store import DocumentStore

logger = logging.getLogger(__name__)

Listener = Callable[[MachineSnapshot], None]


class BookingSession:
    """Async context manager holding one booking's machine for a caller."""

    def __init__(
        self,
        store: DocumentStore,
        calendar_event_id: str,
        tenant: str | None,
        actions: BookingActions,
        service: TransitionService,
    ) -> None:
        self.store = store
        self.calendar_event_id = calendar_event_id
        self.tenant = tenant
        self.actions = actions
        self.service = service
        self._machine: BookingStateMachine | None = None
        self._serialized: str | None = None
        self._listeners: list[Listener] = []
        self._disposed = False

    async def __aenter__(self) -> "BookingSession":
        booking = await get_booking(self.store, self.calendar_event_id, self.tenant)
        machine = await self.service.load_machine(booking, self.tenant)
        await self._persist_if_changed(booking, machine)
        self._machine = machine
        self._serialized = serialize_snapshot(machine.snapshot())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    @property
    def machine(self) -> BookingStateMachine:
        if self._machine is None or self._disposed:
            raise BookingLifecycleError(f"Session for {self.calendar_event_id} is not active")
        return self._machine

    @property
    def snapshot(self) -> MachineSnapshot:
        return self.machine.snapshot()

    def available_events(self) -> list[str]:
        return self.machine.available_events()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def send_event(
        self,
        event: BookingEvent | str,
        actor_email: str,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Send an event for this booking and refresh local state.

        Rejected events leave the session untouched.
        """
        if self._disposed or self._machine is None:
            raise BookingLifecycleError(f"Session for {self.calendar_event_id} is not active")
        result = await self.actions.perform(event, self.calendar_event_id, actor_email, self.tenant, reason)
        if result.success:
            await self.refresh()
        return result

    async def refresh(self) -> bool:
        """
        Reload the booking and notify subscribers if its snapshot changed.

        Returns:
            True when the snapshot changed
        """
        booking = await get_booking(self.store, self.calendar_event_id, self.tenant)
        machine = await self.service.load_machine(booking, self.tenant)
        await self._persist_if_changed(booking, machine)

        snapshot = machine.snapshot()
        serialized = serialize_snapshot(snapshot)
        if serialized == self._serialized:
            return False

        self._machine = machine
        self._serialized = serialized
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(
                    "Session listener failed | calendar_event_id=%s | error=%s",
                    self.calendar_event_id,
                    e,
                )
        return True

    def dispose(self) -> None:
        self._listeners.clear()
        self._machine = None
        self._disposed = True

    async def _persist_if_changed(self, booking: Booking, machine: BookingStateMachine) -> bool:
        snapshot = machine.snapshot()
        if booking.xstate_data is not None and serialize_snapshot(booking.xstate_data.snapshot) == serialize_snapshot(snapshot):
            return False
        xstate = XStateData(machine_id=machine.machine_id, last_transition=datetime.now(UTC), snapshot=snapshot)
        await update_booking(self.store, self.tenant, booking, {"xstateData": xstate.to_document()})
        logger.debug("Session persisted snapshot | calendar_event_id=%s", self.calendar_event_id)
        return True
