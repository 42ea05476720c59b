"""API route for booking history (BookingLog rows)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_document_store
from api.models.transition import BookingLogResponse
from lifecycle.services.history_service import get_booking_history
from shared.document_store import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["history"])


@router.get("/booking-logs", response_model=list[BookingLogResponse])
async def get_booking_logs(
    request_number: Annotated[int, Query(alias="requestNumber")],
    store: Annotated[DocumentStore, Depends(get_document_store)],
    tenant: str | None = None,
):
    """
    History of a booking, oldest first.

    Bookings without history rows get a history rebuilt from their audit
    timestamps. Unknown request numbers return an empty list.
    """
    logs = await get_booking_history(store, tenant, request_number)
    return [
        BookingLogResponse.model_validate(log.model_dump())
        for log in logs
    ]
