"""
Booking actions - dual-path entry point for status changes.

Every action goes to the transition gateway first. On a gateway failure
(not a rejection) the legacy fallback applies the equivalent direct update.
"""

import logging

from lifecycle.fsm.models import BookingEvent
from lifecycle.services.legacy_fallback import LegacyFallbackProcessor
from lifecycle.services.side_effects import SideEffectOrchestrator
from lifecycle.services.transition_gateway import (
    InProcessTransitionGateway,
    TransitionGateway,
    TransitionResult,
)
from lifecycle.services.transition_service import TransitionService
from shared.document_store import DocumentStore

logger = logging.getLogger(__name__)


class BookingActions:
    """Performs booking actions through the gateway with legacy recovery."""

    def __init__(self, gateway: TransitionGateway, fallback: LegacyFallbackProcessor):
        self.gateway = gateway
        self.fallback = fallback

    async def perform(
        self,
        event: BookingEvent | str,
        calendar_event_id: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        Send an event, recovering gateway failures through the fallback.

        Returns:
            TransitionResult from the gateway, or from the fallback when the
            gateway failed
        """
        event_type = event.value if isinstance(event, BookingEvent) else event
        result = await self.gateway.transition(calendar_event_id, event_type, actor_email, tenant, reason)

        if result.rejected:
            logger.info(
                "Action rejected, keeping current state | event=%s | calendar_event_id=%s | error=%s",
                event_type,
                calendar_event_id,
                result.error,
            )

        async def run_fallback(failed: TransitionResult) -> TransitionResult:
            logger.warning(
                "Gateway failed, using legacy fallback | event=%s | calendar_event_id=%s | error=%s",
                event_type,
                calendar_event_id,
                failed.error,
            )
            return await self.fallback.process(
                event_type, calendar_event_id, actor_email, tenant, reason, failed=failed
            )

        return await result.recover(run_fallback)

    async def approve(self, calendar_event_id: str, actor_email: str, tenant: str | None) -> TransitionResult:
        return await self.perform(BookingEvent.APPROVE, calendar_event_id, actor_email, tenant)

    async def decline(
        self, calendar_event_id: str, actor_email: str, tenant: str | None, reason: str | None = None
    ) -> TransitionResult:
        return await self.perform(BookingEvent.DECLINE, calendar_event_id, actor_email, tenant, reason)

    async def cancel(
        self, calendar_event_id: str, actor_email: str, tenant: str | None, reason: str | None = None
    ) -> TransitionResult:
        return await self.perform(BookingEvent.CANCEL, calendar_event_id, actor_email, tenant, reason)

    async def check_in(self, calendar_event_id: str, actor_email: str, tenant: str | None) -> TransitionResult:
        return await self.perform(BookingEvent.CHECK_IN, calendar_event_id, actor_email, tenant)

    async def check_out(self, calendar_event_id: str, actor_email: str, tenant: str | None) -> TransitionResult:
        return await self.perform(BookingEvent.CHECK_OUT, calendar_event_id, actor_email, tenant)

    async def no_show(self, calendar_event_id: str, actor_email: str, tenant: str | None) -> TransitionResult:
        return await self.perform(BookingEvent.NO_SHOW, calendar_event_id, actor_email, tenant)


def build_booking_actions(
    store: DocumentStore,
    gateway: TransitionGateway | None = None,
    orchestrator: SideEffectOrchestrator | None = None,
) -> BookingActions:
    """
    Wire the dual-path action stack over one document store.

    Without a gateway, events are applied in process by a TransitionService
    sharing the same store and orchestrator.
    """
    orchestrator = orchestrator or SideEffectOrchestrator(store)
    if gateway is None:
        gateway = InProcessTransitionGateway(TransitionService(store, orchestrator))
    return BookingActions(gateway, LegacyFallbackProcessor(store, orchestrator))
