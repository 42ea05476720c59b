"""
Data models for the booking lifecycle.

Enums:
- ServiceKey: closed set of requestable services
- BookingEvent: events accepted by the booking machine
- BookingOrigin: how a booking was created (drives penalty and auto-approval rules)

Persisted documents (pydantic, camelCase on the wire):
- Booking, XStateData, MachineSnapshot, MachineContext
- BookingLog, PreBanLog
- RoomSetting / RoomAutoApproval

Transition results:
- FSMResult: outcome of a single BookingStateMachine.send() call
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lifecycle.fsm.state_value import StateValue


class ServiceKey(str, Enum):
    """Services a requester can ask for alongside a room."""

    SETUP = "setup"
    EQUIPMENT = "equipment"
    STAFFING = "staffing"
    CATERING = "catering"
    CLEANING = "cleaning"
    SECURITY = "security"

    @property
    def display_name(self) -> str:
        """Name used inside machine region and leaf names ("Staff Request")."""
        if self is ServiceKey.STAFFING:
            return "Staff"
        return self.value.capitalize()


class BookingEvent(str, Enum):
    """Events accepted by the booking machine."""

    APPROVE = "approve"
    DECLINE = "decline"
    CANCEL = "cancel"
    EDIT = "edit"
    MODIFY = "Modify"
    CHECK_IN = "checkIn"
    CHECK_OUT = "checkOut"
    NO_SHOW = "noShow"
    AUTO_CLOSE = "autoCloseScript"

    # Per-service events
    APPROVE_SETUP = "approveSetup"
    APPROVE_EQUIPMENT = "approveEquipment"
    APPROVE_STAFFING = "approveStaffing"
    APPROVE_CATERING = "approveCatering"
    APPROVE_CLEANING = "approveCleaning"
    APPROVE_SECURITY = "approveSecurity"
    DECLINE_SETUP = "declineSetup"
    DECLINE_EQUIPMENT = "declineEquipment"
    DECLINE_STAFFING = "declineStaffing"
    DECLINE_CATERING = "declineCatering"
    DECLINE_CLEANING = "declineCleaning"
    DECLINE_SECURITY = "declineSecurity"
    CLOSEOUT_SETUP = "closeoutSetup"
    CLOSEOUT_EQUIPMENT = "closeoutEquipment"
    CLOSEOUT_STAFFING = "closeoutStaffing"
    CLOSEOUT_CATERING = "closeoutCatering"
    CLOSEOUT_CLEANING = "closeoutCleaning"
    CLOSEOUT_SECURITY = "closeoutSecurity"

    @property
    def service_action(self) -> tuple[str, ServiceKey] | None:
        """("approve" | "decline" | "closeout", service) for per-service events."""
        for prefix in ("approve", "decline", "closeout"):
            if self.value.startswith(prefix) and self.value != prefix:
                return prefix, ServiceKey(self.value[len(prefix):].lower())
        return None


class BookingOrigin(str, Enum):
    """How the booking was created."""

    USER = "user"
    ADMIN = "admin"
    WALK_IN = "walk-in"
    VIP = "vip"
    PREGAME = "pregame"
    SYSTEM = "system"


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase, JSON-compatible document form."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class RoomAutoApproval(CamelModel):
    """Per-room auto-approval configuration."""

    min_hour: dict[str, float] = Field(default_factory=dict)
    max_hour: dict[str, float] = Field(default_factory=dict)
    conditions: dict[str, bool] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.min_hour or self.max_hour or self.conditions)


class RoomSetting(CamelModel):
    """Selected room with its auto-approval configuration."""

    room_id: int | str
    name: str | None = None
    auto_approval: RoomAutoApproval | None = None


class MachineContext(CamelModel):
    """Extended state carried by the booking machine."""

    tenant: str | None = None
    calendar_event_id: str | None = None
    email: str | None = None
    is_vip: bool = False
    is_walk_in: bool = False
    role: str | None = None
    duration_hours: float | None = None
    selected_rooms: list[RoomSetting] = Field(default_factory=list)
    services_requested: dict[str, bool] = Field(default_factory=dict)
    services_approved: dict[str, bool] = Field(default_factory=dict)
    services_declined: dict[str, bool] = Field(default_factory=dict)
    services_closed_out: dict[str, bool] = Field(default_factory=dict)
    decline_reason: str | None = None
    restored_from_status: bool = False
    status: str | None = None


class MachineSnapshot(CamelModel):
    """Serialized machine state: value, run status and context."""

    value: str | dict[str, Any]
    status: str = "active"
    context: MachineContext = Field(default_factory=MachineContext)


class XStateData(CamelModel):
    """Machine data attached to a booking."""

    machine_id: str
    last_transition: datetime | None = None
    snapshot: MachineSnapshot


class Booking(CamelModel):
    """
    Booking document.

    The timestamp pairs form the audit trail; the machine snapshot in
    xstate_data is authoritative for the current state.
    """

    id: str
    calendar_event_id: str
    request_number: int | None = None
    email: str | None = None
    net_id: str | None = None
    title: str | None = None
    role: str | None = None
    origin: BookingOrigin = BookingOrigin.USER
    room_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: str | None = None
    xstate_data: XStateData | None = None

    # Service detail fields ("no" or empty means not requested)
    room_setup: str | None = None
    equipment_services: str | None = None
    staffing_services_details: str | None = None
    catering: str | None = None
    cleaning_service: str | None = None
    hire_security: str | None = None

    requested_at: datetime | None = None
    first_approved_at: datetime | None = None
    first_approved_by: str | None = None
    final_approved_at: datetime | None = None
    final_approved_by: str | None = None
    declined_at: datetime | None = None
    declined_by: str | None = None
    decline_reason: str | None = None
    canceled_at: datetime | None = None
    canceled_by: str | None = None
    checked_in_at: datetime | None = None
    checked_in_by: str | None = None
    checked_out_at: datetime | None = None
    checked_out_by: str | None = None
    no_showed_at: datetime | None = None
    no_showed_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    walked_in_at: datetime | None = None

    def requested_services(self) -> dict[str, bool]:
        """Service flags derived from the detail fields."""
        sources = {
            ServiceKey.SETUP: self.room_setup,
            ServiceKey.EQUIPMENT: self.equipment_services,
            ServiceKey.STAFFING: self.staffing_services_details,
            ServiceKey.CATERING: self.catering,
            ServiceKey.CLEANING: self.cleaning_service,
            ServiceKey.SECURITY: self.hire_security,
        }
        return {
            key.value: bool(detail) and detail != "no"
            for key, detail in sources.items()
        }

    @property
    def is_vip(self) -> bool:
        return self.origin == BookingOrigin.VIP

    @property
    def is_walk_in(self) -> bool:
        return self.origin == BookingOrigin.WALK_IN

    @property
    def duration_hours(self) -> float | None:
        if self.start_date is None or self.end_date is None:
            return None
        return (self.end_date - self.start_date).total_seconds() / 3600


class BookingLog(CamelModel):
    """Append-only history row, one per accepted transition."""

    booking_id: str
    calendar_event_id: str
    status: str
    changed_by: str
    changed_at: datetime
    note: str | None = None
    request_number: int | None = None


class PreBanLog(CamelModel):
    """Recorded policy violation (late cancel or no-show)."""

    net_id: str
    booking_id: str
    late_cancel_date: datetime | None = None
    no_show_date: datetime | None = None


@dataclass
class FSMResult:
    """
    Result of a BookingStateMachine.send() call.

    Attributes:
        success: False when the event was rejected from the current state
        previous_state: Top-level state before the event
        new_state: Top-level state after the event (unchanged on rejection)
        value: Full state value after the event
        entered: Top-level states entered, in order (cascades included)
        changed: True when the top-level state actually changed
        error: Rejection reason
    """

    success: bool
    previous_state: str
    new_state: str
    value: StateValue
    entered: list[str] = field(default_factory=list)
    changed: bool = False
    error: str | None = None
