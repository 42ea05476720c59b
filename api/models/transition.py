"""Pydantic models for the transition and history endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransitionRequest(CamelRequest):
    """
    Body of POST /api/xstate-transition.

    Format: {"calendarEventId": "...", "eventType": "approve", "email": "...", "tenant": "mc"}
    """

    calendar_event_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    email: str = Field(min_length=1)
    tenant: str | None = None
    reason: str | None = None


class TransitionResponse(CamelRequest):
    success: bool
    new_state: str | None = None
    entered: list[str] = []
    via_fallback: bool = False


class MachineStateResponse(CamelRequest):
    """Current machine state of a booking and the events it accepts."""

    calendar_event_id: str
    current_state: str
    status: str
    available_events: list[str]


class BookingLogResponse(CamelRequest):
    booking_id: str
    calendar_event_id: str
    status: str
    changed_by: str
    changed_at: datetime
    note: str | None = None
    request_number: int | None = None


class JobRunResponse(CamelRequest):
    """Outcome of a scheduled job run."""

    job: str
    tenant: str
    dry_run: bool
    calendar_event_ids: list[str]
