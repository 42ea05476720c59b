"""
Calendar sync client.

Updates the status prefix of a booking's external calendar event, e.g.
"[APPROVED] Thesis screening".
"""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)


class CalendarClient:
    """Client for the calendar events endpoint."""

    def __init__(self, api_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.api_url = (api_url or settings.CALENDAR_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def update_status(
        self,
        calendar_event_id: str,
        status_prefix: str,
        tenant: str | None = None,
        extra_values: dict[str, Any] | None = None,
    ) -> None:
        """
        PUT the new status prefix for a calendar event.

        Args:
            calendar_event_id: External calendar event id
            status_prefix: Status label to prefix the event title with
            tenant: Tenant owning the calendar
            extra_values: Additional event fields (e.g. a new end time on checkout)

        Raises:
            httpx.HTTPError: After 3 failed attempts
        """
        payload: dict[str, Any] = {
            "calendarEventId": calendar_event_id,
            "newValues": {"statusPrefix": status_prefix, **(extra_values or {})},
        }
        headers = {"x-tenant": tenant} if tenant else {}
        async with httpx.AsyncClient() as client:
            try:
                response = await client.put(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )
                response.raise_for_status()
                logger.info(
                    f"Calendar status updated: {calendar_event_id} -> {status_prefix}"
                )
            except httpx.HTTPError as e:
                logger.error(f"HTTP error updating calendar event {calendar_event_id}: {e}")
                raise
