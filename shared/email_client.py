"""
Email dispatcher client.

Posts booking status emails to the email service, which renders the
"booking_detail" template with the supplied header message and contents.
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

BOOKING_DETAIL_TEMPLATE = "booking_detail"


class EmailClient:
    """Client for the email dispatch endpoint."""

    def __init__(self, api_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.api_url = (api_url or settings.EMAIL_API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def send(
        self,
        target_email: str,
        status: str,
        header_message: str,
        contents: dict[str, Any],
        template_name: str = BOOKING_DETAIL_TEMPLATE,
    ) -> None:
        """
        Send one status email.

        Args:
            target_email: Recipient
            status: Status label shown in the email
            header_message: First paragraph of the email body
            contents: Booking fields rendered by the template
            template_name: Template to render

        Raises:
            httpx.HTTPError: After 3 failed attempts
        """
        payload = {
            "targetEmail": target_email,
            "templateName": template_name,
            "status": status,
            "headerMessage": header_message,
            "contents": {**contents, "headerMessage": header_message},
            "eventTitle": contents.get("title"),
            "requestNumber": contents.get("requestNumber") or "--",
            "bodyMessage": "",
        }
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(self.api_url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                logger.info(f"Status email sent: status={status} to={target_email}")
            except httpx.HTTPError as e:
                logger.error(f"HTTP error sending status email: {e}")
                raise
