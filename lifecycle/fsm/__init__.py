"""
FSM module for the booking lifecycle.

Public exports:
    - BookingStateMachine: lifecycle FSM with guards, cascades and service tracks
    - MachineState / StatusLabel: machine display names and flat status labels
    - BookingEvent / ServiceKey: event and service vocabularies
    - ServiceTracks / TrackState: per-service sub-workflow
    - evaluate_auto_approval: pure auto-approval evaluator
    - parse_state_value / SimpleState / CompositeState: state value reader
    - FSMResult: result of a machine event
"""

from lifecycle.fsm.auto_approval import (
    AutoApprovalInput,
    AutoApprovalResult,
    evaluate_auto_approval,
    get_combined_hour_limits,
    normalize_role,
)
from lifecycle.fsm.booking_machine import DEFAULT_DECLINE_REASON, BookingStateMachine
from lifecycle.fsm.models import (
    Booking,
    BookingEvent,
    BookingLog,
    BookingOrigin,
    FSMResult,
    MachineContext,
    MachineSnapshot,
    PreBanLog,
    RoomAutoApproval,
    RoomSetting,
    ServiceKey,
    XStateData,
)
from lifecycle.fsm.service_tracks import ServiceTracks, TrackState
from lifecycle.fsm.state_value import (
    CompositeState,
    SimpleState,
    StateValue,
    parse_state_value,
    to_wire,
)
from lifecycle.fsm.status import (
    MachineState,
    StatusLabel,
    label_for_state,
    status_from_booking,
)

__all__ = [
    "AutoApprovalInput",
    "AutoApprovalResult",
    "Booking",
    "BookingEvent",
    "BookingLog",
    "BookingOrigin",
    "BookingStateMachine",
    "CompositeState",
    "DEFAULT_DECLINE_REASON",
    "FSMResult",
    "MachineContext",
    "MachineSnapshot",
    "MachineState",
    "PreBanLog",
    "RoomAutoApproval",
    "RoomSetting",
    "ServiceKey",
    "ServiceTracks",
    "SimpleState",
    "StateValue",
    "StatusLabel",
    "TrackState",
    "XStateData",
    "evaluate_auto_approval",
    "get_combined_hour_limits",
    "label_for_state",
    "normalize_role",
    "parse_state_value",
    "status_from_booking",
    "to_wire",
]
