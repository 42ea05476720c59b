"""
Status vocabulary for bookings.

Two closed sets live here:
- StatusLabel: flat labels used on the wire, in BookingLog rows, calendar
  prefixes and emails ("CHECKED-IN", "NO-SHOW", ...)
- MachineState: display names of the machine's top-level states
  ("Checked In", "No Show", ...)

label_for_state() maps any machine value onto StatusLabel, and
status_from_booking() derives the current label from a booking document,
falling back to the legacy timestamp bag for bookings without a snapshot.
"""

import logging
import re
from enum import Enum
from typing import Any

from lifecycle.fsm.state_value import (
    CompositeState,
    StateValue,
    contains_state,
    parse_state_value,
)

logger = logging.getLogger(__name__)


class StatusLabel(str, Enum):
    """Flat booking status labels."""

    REQUESTED = "REQUESTED"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    CANCELED = "CANCELED"
    CHECKED_IN = "CHECKED-IN"
    CHECKED_OUT = "CHECKED-OUT"
    NO_SHOW = "NO-SHOW"
    MODIFIED = "MODIFIED"
    WALK_IN = "WALK-IN"
    CLOSED = "CLOSED"
    UNKNOWN = "UNKNOWN"


class MachineState(str, Enum):
    """Top-level machine states (display names as persisted)."""

    REQUESTED = "Requested"
    PRE_APPROVED = "Pre-approved"
    APPROVED = "Approved"
    DECLINED = "Declined"
    CANCELED = "Canceled"
    CHECKED_IN = "Checked In"
    CHECKED_OUT = "Checked Out"
    NO_SHOW = "No Show"
    CLOSED = "Closed"
    SERVICES_REQUEST = "Services Request"
    SERVICE_CLOSEOUT = "Service Closeout"


# States from which the booking never moves again. Canceled only rests here
# for bookings restored from a legacy status; otherwise it cascades onward.
TERMINAL_STATES: frozenset[MachineState] = frozenset(
    {MachineState.CANCELED, MachineState.CLOSED}
)

MACHINE_STATE_LABELS: dict[MachineState, StatusLabel] = {
    MachineState.REQUESTED: StatusLabel.REQUESTED,
    MachineState.PRE_APPROVED: StatusLabel.PENDING,
    MachineState.SERVICES_REQUEST: StatusLabel.PENDING,
    MachineState.APPROVED: StatusLabel.APPROVED,
    MachineState.DECLINED: StatusLabel.DECLINED,
    MachineState.CANCELED: StatusLabel.CANCELED,
    MachineState.CHECKED_IN: StatusLabel.CHECKED_IN,
    MachineState.CHECKED_OUT: StatusLabel.CHECKED_OUT,
    MachineState.SERVICE_CLOSEOUT: StatusLabel.CHECKED_OUT,
    MachineState.NO_SHOW: StatusLabel.NO_SHOW,
    MachineState.CLOSED: StatusLabel.CLOSED,
}

# Legacy timestamp fields, checked in priority order
LEGACY_TIMESTAMP_LABELS: tuple[tuple[str, StatusLabel], ...] = (
    ("noShowedAt", StatusLabel.NO_SHOW),
    ("checkedOutAt", StatusLabel.CHECKED_OUT),
    ("checkedInAt", StatusLabel.CHECKED_IN),
    ("canceledAt", StatusLabel.CANCELED),
    ("declinedAt", StatusLabel.DECLINED),
    ("finalApprovedAt", StatusLabel.APPROVED),
    ("firstApprovedAt", StatusLabel.PENDING),
    ("requestedAt", StatusLabel.REQUESTED),
)


def label_for_state(
    value: StateValue | str | dict, no_showed: bool = False, canceled: bool = False
) -> StatusLabel | str:
    """
    Map a machine state value onto the flat status label.

    A canceled booking keeps reading as CANCELED while its services are
    closed out and after it is closed.

    Args:
        value: State value in any encoding
        no_showed: True when the booking carries a noShowedAt timestamp
        canceled: True when the booking carries a canceledAt timestamp

    Returns:
        StatusLabel for known states. Unknown simple names are upper-cased
        with whitespace replaced by "_" and returned as plain strings.
    """
    parsed = parse_state_value(value)

    if isinstance(parsed, CompositeState):
        # Closeout outranks the approval region when both are present
        if contains_state(parsed, MachineState.SERVICE_CLOSEOUT.value):
            return StatusLabel.CANCELED if (no_showed or canceled) else StatusLabel.CHECKED_OUT
        if contains_state(parsed, MachineState.SERVICES_REQUEST.value):
            return StatusLabel.PENDING
        logger.debug("Unrecognized composite state value: %s", list(parsed.regions))
        return StatusLabel.UNKNOWN

    try:
        state = MachineState(parsed.name)
    except ValueError:
        return re.sub(r"\s+", "_", parsed.name.upper())
    if state == MachineState.CLOSED and (no_showed or canceled):
        return StatusLabel.CANCELED
    return MACHINE_STATE_LABELS[state]


def status_from_booking(doc: dict[str, Any]) -> StatusLabel | str:
    """
    Derive the current status label of a booking document.

    Priority:
    1. Machine snapshot value (xstateData.snapshot.value)
    2. Mirrored "status" field
    3. Legacy timestamps (noShowedAt, checkedOutAt, ... requestedAt)
    4. REQUESTED

    Args:
        doc: Booking document in its camelCase wire form

    Returns:
        Status label
    """
    snapshot = (doc.get("xstateData") or {}).get("snapshot") or {}
    value = snapshot.get("value")
    if value:
        try:
            return label_for_state(
                value,
                no_showed=bool(doc.get("noShowedAt")),
                canceled=bool(doc.get("canceledAt")),
            )
        except ValueError:
            logger.warning(
                "Unreadable snapshot value, using legacy status | calendar_event_id=%s",
                doc.get("calendarEventId"),
            )

    status = doc.get("status")
    if status:
        try:
            return StatusLabel(status)
        except ValueError:
            return status

    for field_name, label in LEGACY_TIMESTAMP_LABELS:
        if doc.get(field_name):
            return label

    return StatusLabel.REQUESTED
