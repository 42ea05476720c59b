"""
API routes that trigger scheduled jobs.

Called by an external scheduler with "Authorization: Bearer <CRON_SECRET>".
"""

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException

from api.dependencies import get_booking_actions, get_document_store
from api.models.transition import JobRunResponse
from lifecycle.services.booking_actions import BookingActions
from lifecycle.workers.auto_cancel_declined import cancel_declined_bookings
from lifecycle.workers.auto_checkout import checkout_overdue_bookings
from shared.config import get_settings
from shared.document_store import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def verify_cron_secret(authorization: Annotated[str | None, Header()] = None) -> None:
    """
    Check the bearer token against CRON_SECRET.

    Raises:
        HTTPException 401: Missing or wrong token, or no secret configured
    """
    secret = get_settings().CRON_SECRET
    token = (authorization or "").removeprefix("Bearer ").strip()
    if not secret or not hmac.compare_digest(token, secret):
        logger.warning("Rejected job trigger with invalid cron secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/auto-cancel-declined", response_model=JobRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_auto_cancel_declined(
    store: Annotated[DocumentStore, Depends(get_document_store)],
    actions: Annotated[BookingActions, Depends(get_booking_actions)],
    tenant: str | None = None,
    dry_run: bool = False,
):
    """Cancel declined bookings whose grace period has elapsed."""
    tenant = tenant or get_settings().DEFAULT_TENANT
    ids = await cancel_declined_bookings(store, actions, tenant=tenant, dry_run=dry_run)
    return JobRunResponse(job="auto-cancel-declined", tenant=tenant, dry_run=dry_run, calendar_event_ids=ids)


@router.post("/auto-checkout", response_model=JobRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_auto_checkout(
    store: Annotated[DocumentStore, Depends(get_document_store)],
    actions: Annotated[BookingActions, Depends(get_booking_actions)],
    tenant: str | None = None,
    dry_run: bool = False,
):
    """Check out bookings still checked in past their end time."""
    tenant = tenant or get_settings().DEFAULT_TENANT
    ids = await checkout_overdue_bookings(store, actions, tenant=tenant, dry_run=dry_run)
    return JobRunResponse(job="auto-checkout", tenant=tenant, dry_run=dry_run, calendar_event_ids=ids)
