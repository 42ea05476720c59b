"""
Services for the booking lifecycle.

Public exports:
    - TransitionService: applies events through the booking machine
    - HttpTransitionGateway / InProcessTransitionGateway / TransitionResult
    - SideEffectOrchestrator: persistence, history, email and calendar effects
    - LegacyFallbackProcessor: direct updates when the gateway fails
    - BookingActions / build_booking_actions: dual-path entry point
    - BookingSession: per-booking session (async context manager)
    - get_booking_history: history rows with legacy reconstruction
"""

from lifecycle.services.booking_actions import BookingActions, build_booking_actions
from lifecycle.services.booking_session import BookingSession
from lifecycle.services.history_service import get_booking_history, reconstruct_history
from lifecycle.services.legacy_fallback import LegacyFallbackProcessor
from lifecycle.services.penalty_policy import is_late_cancel, is_policy_violation
from lifecycle.services.side_effects import SideEffectOrchestrator, SideEffectReport
from lifecycle.services.transition_gateway import (
    HttpTransitionGateway,
    InProcessTransitionGateway,
    TransitionResult,
)
from lifecycle.services.transition_service import TransitionService

__all__ = [
    "BookingActions",
    "BookingSession",
    "HttpTransitionGateway",
    "InProcessTransitionGateway",
    "LegacyFallbackProcessor",
    "SideEffectOrchestrator",
    "SideEffectReport",
    "TransitionResult",
    "TransitionService",
    "build_booking_actions",
    "get_booking_history",
    "is_late_cancel",
    "is_policy_violation",
    "reconstruct_history",
]
