"""
FastAPI dependency providers.

The document store and the action stack are process-wide singletons;
tests replace them with app.dependency_overrides.
"""

from functools import lru_cache

from database.document_store import SqlDocumentStore
from lifecycle.services.booking_actions import BookingActions, build_booking_actions
from lifecycle.services.side_effects import SideEffectOrchestrator
from lifecycle.services.transition_service import TransitionService
from shared.document_store import DocumentStore


@lru_cache
def get_document_store() -> DocumentStore:
    return SqlDocumentStore()


@lru_cache
def get_orchestrator() -> SideEffectOrchestrator:
    # Email and calendar run after the response is sent
    return SideEffectOrchestrator(get_document_store(), notify_in_background=True)


def get_transition_service() -> TransitionService:
    return TransitionService(get_document_store(), get_orchestrator())


def get_booking_actions() -> BookingActions:
    return build_booking_actions(get_document_store(), orchestrator=get_orchestrator())
