"""
Auto-approval evaluator.

Decides whether a booking may skip human final approval, based on the
selected rooms' autoApproval configuration, the requester's role, the
booking origin, its duration and the services requested.

Pure and deterministic: no I/O, no clock, no logging side effects beyond
debug output.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from lifecycle.fsm.models import RoomSetting

logger = logging.getLogger(__name__)

ADMIN_ROLE_KEYWORDS = ("admin", "staff", "chair", "director")
FACULTY_ROLE_KEYWORDS = ("faculty", "fellow", "resident")

NO_LIMIT = -1


@dataclass
class AutoApprovalInput:
    """Booking shape consumed by the evaluator."""

    selected_rooms: list[RoomSetting]
    role: str | None = None
    is_vip: bool = False
    is_walk_in: bool = False
    duration_hours: float | None = None
    services_requested: dict[str, bool] = field(default_factory=dict)


@dataclass
class AutoApprovalResult:
    """Evaluator decision."""

    can_auto_approve: bool
    reason: str
    details: dict[str, Any] | None = None


def normalize_role(role: str | None) -> str:
    """
    Collapse a free-form role into admin, faculty or student.

    Matching is case-insensitive and keyword based; anything unrecognized
    (including a missing role) is treated as student.
    """
    if not role:
        return "student"
    lowered = role.lower()
    if any(keyword in lowered for keyword in ADMIN_ROLE_KEYWORDS):
        return "admin"
    if any(keyword in lowered for keyword in FACULTY_ROLE_KEYWORDS):
        return "faculty"
    return "student"


def is_room_auto_approval_enabled(room: RoomSetting) -> bool:
    """A room participates only with a non-empty autoApproval config."""
    return room.auto_approval is not None and not room.auto_approval.is_empty()


def get_combined_hour_limits(rooms: list[RoomSetting], role: str | None) -> tuple[float, float]:
    """
    Most restrictive (min, max) hour bounds across rooms for a role.

    Only positive room values tighten a bound: the highest minimum and the
    lowest maximum win. -1 in the result means no limit.
    """
    normalized = normalize_role(role)
    min_hours: float = NO_LIMIT
    max_hours: float = NO_LIMIT

    for room in rooms:
        config = room.auto_approval
        if config is None:
            continue

        room_min = config.min_hour.get(normalized, NO_LIMIT)
        if room_min > 0:
            min_hours = room_min if min_hours == NO_LIMIT else max(min_hours, room_min)

        room_max = config.max_hour.get(normalized, NO_LIMIT)
        if room_max > 0:
            max_hours = room_max if max_hours == NO_LIMIT else min(max_hours, room_max)

    return min_hours, max_hours


def _format_hours(value: float) -> str:
    return f"{value:g}"


def evaluate_auto_approval(booking: AutoApprovalInput) -> AutoApprovalResult:
    """
    Evaluate whether a booking can be auto-approved.

    Rules, in order:
    1. VIP or walk-in origin always auto-approves
    2. At least one room must be selected
    3. Every selected room must have auto-approval enabled
    4. Duration must lie within the combined role hour limits (when given)
    5. Every requested service must be allowed by every selected room

    Args:
        booking: Evaluator input

    Returns:
        AutoApprovalResult with the decision and a human-readable reason
    """
    if booking.is_vip:
        return AutoApprovalResult(True, "VIP booking")
    if booking.is_walk_in:
        return AutoApprovalResult(True, "Walk-in booking")

    rooms = booking.selected_rooms
    if not rooms:
        return AutoApprovalResult(False, "No rooms selected")

    if not all(is_room_auto_approval_enabled(room) for room in rooms):
        return AutoApprovalResult(
            False, "One or more selected rooms do not have auto-approval enabled"
        )

    if booking.duration_hours is not None:
        duration = booking.duration_hours
        min_hours, max_hours = get_combined_hour_limits(rooms, booking.role)
        role_label = booking.role or "student"
        details = {
            "minHours": min_hours,
            "maxHours": max_hours,
            "durationHours": duration,
        }

        if min_hours != NO_LIMIT and duration < min_hours:
            return AutoApprovalResult(
                False,
                f"Booking duration ({duration:.1f}h) is below minimum "
                f"({_format_hours(min_hours)}h) for {role_label}",
                details,
            )
        if max_hours != NO_LIMIT and duration > max_hours:
            return AutoApprovalResult(
                False,
                f"Booking duration ({duration:.1f}h) exceeds maximum "
                f"({_format_hours(max_hours)}h) for {role_label}",
                details,
            )

    for service, requested in booking.services_requested.items():
        if not requested:
            continue
        for room in rooms:
            conditions = room.auto_approval.conditions if room.auto_approval else {}
            if not conditions.get(service):
                logger.debug(
                    "Service %s blocks auto-approval in room %s", service, room.room_id
                )
                return AutoApprovalResult(
                    False,
                    f"Service '{service}' is not allowed for auto-approval "
                    f"in one or more selected rooms",
                )

    return AutoApprovalResult(True, "All auto-approval conditions met")
