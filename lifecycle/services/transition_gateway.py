"""
Transition gateway - boundary to the authoritative machine instance.

Sends an event for one booking and reports the outcome as a TransitionResult.
The gateway never raises: transport errors, open circuits and remote errors
all come back as failed results, which callers hand to the legacy fallback
through TransitionResult.recover().

Implementations:
- HttpTransitionGateway: POSTs to the remote transition endpoint (single attempt)
- InProcessTransitionGateway: calls a local TransitionService
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

import httpx
import pybreaker

from shared.circuit_breaker import call_with_breaker, transition_breaker
from shared.config import get_settings

if TYPE_CHECKING:
    from lifecycle.services.transition_service import TransitionService

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """
    Outcome of sending one event.

    Attributes:
        success: True when the event was applied
        new_state: Top-level machine state after the event; on failure, the
            state the remote reported reaching, if any
        error: Failure description
        rejected: The event is not valid from the current state; this is a
            no-op and is never recovered by the fallback
        entered: States entered, cascades included
        via_fallback: Produced by the legacy fallback path
    """

    success: bool
    new_state: str | None = None
    error: str | None = None
    rejected: bool = False
    entered: list[str] = field(default_factory=list)
    via_fallback: bool = False

    @classmethod
    def ok(cls, new_state: str, entered: list[str] | None = None, via_fallback: bool = False) -> "TransitionResult":
        return cls(success=True, new_state=new_state, entered=entered or [], via_fallback=via_fallback)

    @classmethod
    def failure(cls, error: str, new_state: str | None = None) -> "TransitionResult":
        return cls(success=False, new_state=new_state, error=error)

    @classmethod
    def rejection(cls, error: str, state: str | None = None) -> "TransitionResult":
        return cls(success=False, new_state=state, error=error, rejected=True)

    async def recover(
        self, handler: Callable[["TransitionResult"], Awaitable["TransitionResult"]]
    ) -> "TransitionResult":
        """
        Run handler on gateway failure.

        Successful and rejected results are returned unchanged.
        """
        if self.success or self.rejected:
            return self
        return await handler(self)


class TransitionGateway(Protocol):
    async def transition(
        self,
        calendar_event_id: str,
        event_type: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
    ) -> TransitionResult:
        ...


class HttpTransitionGateway:
    """Gateway to a remote transition endpoint over HTTP."""

    def __init__(self, api_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.api_url = api_url or settings.TRANSITION_API_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    async def _post(self, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.post(self.api_url, json=payload, timeout=self.timeout)

    async def transition(
        self,
        calendar_event_id: str,
        event_type: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
    ) -> TransitionResult:
        """
        POST the event to the remote machine.

        Returns:
            TransitionResult; 400 responses flagged "rejected" map to rejections,
            every other error to a failure
        """
        payload = {
            "calendarEventId": calendar_event_id,
            "eventType": event_type,
            "email": actor_email,
            "tenant": tenant,
            "reason": reason,
        }
        try:
            response = await call_with_breaker(transition_breaker, self._post, payload)
        except pybreaker.CircuitBreakerError:
            return TransitionResult.failure("Transition API circuit open")
        except httpx.HTTPError as e:
            logger.warning(
                "Transition API unreachable | calendar_event_id=%s | event=%s | error=%s",
                calendar_event_id,
                event_type,
                e,
            )
            return TransitionResult.failure(f"Transition API error: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success and body.get("success", True):
            return TransitionResult.ok(body.get("newState") or "", entered=body.get("entered") or [])

        error = body.get("error") or f"Transition API returned {response.status_code}"
        if response.status_code == 400 and body.get("rejected"):
            return TransitionResult.rejection(error, body.get("currentState"))

        logger.warning(
            "Transition API failed | status=%s | calendar_event_id=%s | event=%s | error=%s",
            response.status_code,
            calendar_event_id,
            event_type,
            error,
        )
        return TransitionResult.failure(error, new_state=body.get("newState"))


class InProcessTransitionGateway:
    """Gateway that applies events with a local TransitionService."""

    def __init__(self, service: "TransitionService"):
        self.service = service

    async def transition(
        self,
        calendar_event_id: str,
        event_type: str,
        actor_email: str,
        tenant: str | None,
        reason: str | None = None,
    ) -> TransitionResult:
        try:
            return await self.service.transition(
                calendar_event_id, event_type, actor_email, tenant, reason
            )
        except Exception as e:
            logger.warning(
                "In-process transition failed | calendar_event_id=%s | event=%s | error=%s",
                calendar_event_id,
                event_type,
                e,
            )
            return TransitionResult.failure(str(e), new_state=getattr(e, "new_state", None))
