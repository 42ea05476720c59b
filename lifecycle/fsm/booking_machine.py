"""
BookingStateMachine - lifecycle FSM for room bookings.

Governs how a reservation moves from submission through two-stage approval,
optional per-service approval, check-in/out, cancellation, no-show and
closeout.

Key responsibilities:
- Validate events against the current state (invalid events are rejected, never raised)
- Evaluate guards (auto-approval, services-required, services-approved)
- Run cascade transitions (No Show -> Canceled, Canceled and Checked Out ->
  Service Closeout or Closed)
- Drive the per-service tracks of the parallel regions
- Serialize/restore snapshots for persistence
"""

import copy
import logging
from typing import ClassVar

from lifecycle.fsm.auto_approval import AutoApprovalInput, AutoApprovalResult, evaluate_auto_approval
from lifecycle.fsm.models import (
    BookingEvent,
    FSMResult,
    MachineContext,
    MachineSnapshot,
    ServiceKey,
)
from lifecycle.fsm.service_tracks import ServiceTracks
from lifecycle.fsm.state_value import SimpleState, StateValue, parse_state_value, to_wire, top_level_name
from lifecycle.fsm.status import MACHINE_STATE_LABELS, TERMINAL_STATES, MachineState, StatusLabel

logger = logging.getLogger(__name__)

DEFAULT_DECLINE_REASON = "Service requirements could not be fulfilled"
MACHINE_ID = "mc-booking"

# Where a legacy (snapshot-less) booking resumes, by its flat status
LEGACY_LABEL_STATES: dict[StatusLabel, MachineState] = {
    StatusLabel.REQUESTED: MachineState.REQUESTED,
    StatusLabel.MODIFIED: MachineState.REQUESTED,
    StatusLabel.PENDING: MachineState.PRE_APPROVED,
    StatusLabel.APPROVED: MachineState.APPROVED,
    StatusLabel.WALK_IN: MachineState.APPROVED,
    StatusLabel.DECLINED: MachineState.DECLINED,
    StatusLabel.CANCELED: MachineState.CANCELED,
    StatusLabel.NO_SHOW: MachineState.CANCELED,
    StatusLabel.CHECKED_IN: MachineState.CHECKED_IN,
    StatusLabel.CHECKED_OUT: MachineState.CLOSED,
    StatusLabel.CLOSED: MachineState.CLOSED,
}


class BookingStateMachine:
    """
    Booking lifecycle state machine.

    Attributes:
        state: Current top-level MachineState
        context: Extended state (services, decline reason, origin flags)

    Example:
        >>> machine = BookingStateMachine.create(MachineContext(calendar_event_id="evt-1"))
        >>> machine.state
        MachineState.REQUESTED
        >>> machine.send("approve").new_state
        'Pre-approved'
    """

    # Plain transitions: from_state -> {event: to_state}
    # Guarded transitions (approve from Pre-approved, checkOut) and service
    # events are resolved in send()
    TRANSITIONS: ClassVar[dict[MachineState, dict[BookingEvent, MachineState]]] = {
        MachineState.REQUESTED: {
            BookingEvent.APPROVE: MachineState.PRE_APPROVED,
            BookingEvent.DECLINE: MachineState.DECLINED,
            BookingEvent.CANCEL: MachineState.CANCELED,
            BookingEvent.EDIT: MachineState.REQUESTED,
        },
        MachineState.PRE_APPROVED: {
            BookingEvent.DECLINE: MachineState.DECLINED,
            BookingEvent.CANCEL: MachineState.CANCELED,
            BookingEvent.EDIT: MachineState.REQUESTED,
        },
        MachineState.SERVICES_REQUEST: {
            BookingEvent.DECLINE: MachineState.DECLINED,
            BookingEvent.CANCEL: MachineState.CANCELED,
        },
        MachineState.APPROVED: {
            BookingEvent.CHECK_IN: MachineState.CHECKED_IN,
            BookingEvent.CANCEL: MachineState.CANCELED,
            BookingEvent.DECLINE: MachineState.DECLINED,
            BookingEvent.NO_SHOW: MachineState.NO_SHOW,
            BookingEvent.AUTO_CLOSE: MachineState.CLOSED,
            BookingEvent.MODIFY: MachineState.APPROVED,
        },
        MachineState.DECLINED: {
            BookingEvent.CANCEL: MachineState.CANCELED,
            BookingEvent.EDIT: MachineState.REQUESTED,
        },
        MachineState.CHECKED_IN: {},
        MachineState.SERVICE_CLOSEOUT: {},
        MachineState.CHECKED_OUT: {},
        MachineState.NO_SHOW: {},
        MachineState.CANCELED: {},
        MachineState.CLOSED: {},
    }

    # Events that stay in the same state without re-running entry effects
    SELF_TRANSITIONS: ClassVar[set[tuple[MachineState, BookingEvent]]] = {
        (MachineState.REQUESTED, BookingEvent.EDIT),
        (MachineState.APPROVED, BookingEvent.MODIFY),
    }

    def __init__(
        self,
        context: MachineContext,
        state: MachineState = MachineState.REQUESTED,
        machine_id: str = MACHINE_ID,
    ) -> None:
        self._context = context
        self._state = state
        self._machine_id = machine_id
        self._tracks = ServiceTracks.from_context(context)
        self._entered: list[str] = []
        self.last_auto_approval: AutoApprovalResult | None = None

    @classmethod
    def create(cls, context: MachineContext, machine_id: str = MACHINE_ID) -> "BookingStateMachine":
        """
        Start a machine for a new booking.

        The machine enters Requested and, unless the context was restored from
        a legacy status, immediately takes the auto-approval transition when
        the guard holds.
        """
        machine = cls(context, MachineState.REQUESTED, machine_id)
        machine._entered = [MachineState.REQUESTED.value]
        machine._run_requested_entry()
        machine._tracks.apply_to_context(machine._context)
        machine._sync_status()
        return machine

    @classmethod
    def restore(cls, snapshot: MachineSnapshot, machine_id: str = MACHINE_ID) -> "BookingStateMachine":
        """
        Rebuild a machine from a persisted snapshot.

        Unknown state names fall back to Requested with a warning rather than
        failing the caller.
        """
        context = snapshot.context.model_copy(deep=True)
        try:
            value = parse_state_value(snapshot.value)
            state = MachineState(top_level_name(value))
        except ValueError:
            logger.warning(
                "Snapshot has unknown state %r, restoring as Requested | calendar_event_id=%s",
                snapshot.value,
                context.calendar_event_id,
            )
            state = MachineState.REQUESTED
        return cls(context, state, machine_id)

    @classmethod
    def from_legacy_status(
        cls, context: MachineContext, label: StatusLabel | str, machine_id: str = MACHINE_ID
    ) -> "BookingStateMachine":
        """
        Build a machine for a booking that predates snapshots.

        The state comes from the legacy status label; auto-approval is
        disabled for the lifetime of the restored machine.
        """
        context = context.model_copy(deep=True)
        context.restored_from_status = True
        try:
            state = LEGACY_LABEL_STATES[StatusLabel(label)]
        except (KeyError, ValueError):
            logger.warning(
                "No machine state for legacy status %r, using Requested | calendar_event_id=%s",
                label,
                context.calendar_event_id,
            )
            state = MachineState.REQUESTED
        machine = cls(context, state, machine_id)
        if state in (MachineState.APPROVED, MachineState.CHECKED_IN):
            # Services on an approved legacy booking were approved out of band
            for service in machine._tracks.requested:
                machine._tracks.approve(service)
            machine._tracks.apply_to_context(machine._context)
        machine._sync_status()
        return machine

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def context(self) -> MachineContext:
        return self._context

    @property
    def machine_id(self) -> str:
        return self._machine_id

    @property
    def tracks(self) -> ServiceTracks:
        return self._tracks

    @property
    def entered(self) -> list[str]:
        """States entered by the last create() or send(), cascades included."""
        return list(self._entered)

    @property
    def value(self) -> StateValue:
        """Full state value, including the parallel regions."""
        if self._state == MachineState.SERVICES_REQUEST:
            return self._tracks.request_region()
        if self._state == MachineState.SERVICE_CLOSEOUT:
            return self._tracks.closeout_region()
        return SimpleState(self._state.value)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def snapshot(self) -> MachineSnapshot:
        """Serialize current state and context."""
        self._tracks.apply_to_context(self._context)
        self._sync_status()
        return MachineSnapshot(
            value=to_wire(self.value),
            status="done" if self.is_terminal else "active",
            context=self._context.model_copy(deep=True),
        )

    def refresh_context(self, context: MachineContext, include_services: bool = True) -> None:
        """
        Take the booking-derived fields from a freshly built context.

        Used when the booking itself was edited, so guards see the current
        rooms, duration and origin. Service progress is kept; an edit that
        re-enters Requested starts every track over.

        Args:
            context: Context built from the edited booking
            include_services: Also replace the requested services
        """
        self._context.email = context.email
        self._context.role = context.role
        self._context.is_vip = context.is_vip
        self._context.is_walk_in = context.is_walk_in
        self._context.duration_hours = context.duration_hours
        self._context.selected_rooms = [room.model_copy(deep=True) for room in context.selected_rooms]
        if include_services:
            self._context.services_requested = dict(context.services_requested)
            self._tracks = ServiceTracks.from_context(self._context)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def should_auto_approve(self) -> bool:
        """Auto-approval guard; never holds for machines restored from legacy status."""
        if self._context.restored_from_status:
            return False
        self.last_auto_approval = evaluate_auto_approval(
            AutoApprovalInput(
                selected_rooms=self._context.selected_rooms,
                role=self._context.role,
                is_vip=self._context.is_vip,
                is_walk_in=self._context.is_walk_in,
                duration_hours=self._context.duration_hours,
                services_requested=self._context.services_requested,
            )
        )
        return self.last_auto_approval.can_auto_approve

    def services_requested(self) -> bool:
        """Services-required guard."""
        return self._tracks.any_requested

    def services_approved(self) -> bool:
        return self._tracks.any_requested and self._tracks.is_fully_approved

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def can_send(self, event: BookingEvent | str) -> bool:
        """Check whether an event would be accepted, without changing state."""
        trial = copy.deepcopy(self)
        return trial.send(event, _log=False).success

    def available_events(self) -> list[str]:
        """Event names accepted from the current state."""
        return [event.value for event in BookingEvent if self.can_send(event)]

    def send(self, event: BookingEvent | str, reason: str | None = None, _log: bool = True) -> FSMResult:
        """
        Apply an event.

        Args:
            event: Event name or BookingEvent
            reason: Decline reason (decline events only)

        Returns:
            FSMResult; success is False when the event is unknown or not valid
            from the current state, in which case nothing changes.
        """
        previous = self._state

        try:
            booking_event = BookingEvent(event)
        except ValueError:
            return self._reject(previous, str(event), f"Unknown event '{event}'", _log)

        self._entered = []
        accepted = self._dispatch(booking_event, reason)
        if not accepted:
            return self._reject(
                previous,
                booking_event.value,
                f"Event '{booking_event.value}' is not valid from state '{previous.value}'",
                _log,
            )

        self._tracks.apply_to_context(self._context)
        self._sync_status()
        changed = self._state != previous

        if _log:
            logger.info(
                "FSM transition: %s -> %s | event=%s | calendar_event_id=%s",
                previous.value,
                self._state.value,
                booking_event.value,
                self._context.calendar_event_id,
            )

        return FSMResult(
            success=True,
            previous_state=previous.value,
            new_state=self._state.value,
            value=self.value,
            entered=list(self._entered),
            changed=changed,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_self_transition(self, state: MachineState, event: BookingEvent) -> bool:
        return (state, event) in self.SELF_TRANSITIONS

    def _reject(self, previous: MachineState, event: str, error: str, log: bool) -> FSMResult:
        if log:
            logger.warning(
                "FSM transition rejected: %s | event=%s | calendar_event_id=%s",
                previous.value,
                event,
                self._context.calendar_event_id,
            )
        return FSMResult(
            success=False,
            previous_state=previous.value,
            new_state=previous.value,
            value=self.value,
            error=error,
        )

    def _enter(self, state: MachineState) -> None:
        self._state = state
        self._entered.append(state.value)

    def _dispatch(self, event: BookingEvent, reason: str | None) -> bool:
        service_action = event.service_action
        if service_action is not None:
            action, service = service_action
            return self._handle_service_event(action, service, reason)

        if self._is_self_transition(self._state, event):
            # Genuine no-op: no entry actions, no cascades
            return True

        if self._state == MachineState.PRE_APPROVED and event == BookingEvent.APPROVE:
            if self.services_approved():
                self._enter(MachineState.APPROVED)
            elif self.services_requested():
                self._enter(MachineState.SERVICES_REQUEST)
            else:
                self._enter(MachineState.APPROVED)
            return True

        if self._state == MachineState.CHECKED_IN and event == BookingEvent.CHECK_OUT:
            self._enter(MachineState.CHECKED_OUT)
            self._run_closeout_entry()
            return True

        target = self.TRANSITIONS.get(self._state, {}).get(event)
        if target is None:
            return False

        if target == MachineState.DECLINED:
            self._context.decline_reason = reason or DEFAULT_DECLINE_REASON

        self._enter(target)

        if target == MachineState.NO_SHOW:
            # No Show always cascades to Canceled
            self._enter(MachineState.CANCELED)
            self._run_closeout_entry()
        elif target == MachineState.CANCELED:
            self._run_closeout_entry()
        elif target == MachineState.REQUESTED:
            self._context.decline_reason = None
            # Every requested service is evaluated again from scratch
            self._tracks = ServiceTracks(self._context.services_requested)
            self._run_requested_entry()
        return True

    def _handle_service_event(self, action: str, service: ServiceKey, reason: str | None) -> bool:
        if action in ("approve", "decline"):
            if self._state != MachineState.SERVICES_REQUEST:
                return False
            if action == "approve":
                if not self._tracks.approve(service):
                    return False
                if self._tracks.is_fully_approved:
                    self._enter(MachineState.APPROVED)
                return True

            if not self._tracks.decline(service):
                return False
            # Any declined service declines the whole booking
            self._context.decline_reason = reason or DEFAULT_DECLINE_REASON
            self._enter(MachineState.DECLINED)
            return True

        if self._state != MachineState.SERVICE_CLOSEOUT:
            return False
        if not self._tracks.close_out(service):
            return False
        if self._tracks.is_fully_closed_out:
            self._enter(MachineState.CLOSED)
        return True

    def _run_requested_entry(self) -> None:
        if not self.should_auto_approve():
            return
        if self._context.is_vip and self._tracks.any_requested:
            self._enter(MachineState.SERVICES_REQUEST)
            return
        # Services allowed by every room's conditions count as approved
        for service in self._tracks.requested:
            self._tracks.approve(service)
        self._enter(MachineState.APPROVED)
        logger.info(
            "Booking auto-approved: %s | calendar_event_id=%s",
            self.last_auto_approval.reason if self.last_auto_approval else "",
            self._context.calendar_event_id,
        )

    def _run_closeout_entry(self) -> None:
        # Shared by Checked Out and Canceled: approved services are closed out first
        if self._tracks.closeout_required:
            self._enter(MachineState.SERVICE_CLOSEOUT)
        else:
            self._enter(MachineState.CLOSED)

    def _sync_status(self) -> None:
        label = MACHINE_STATE_LABELS.get(self._state)
        self._context.status = label.value if label else None
