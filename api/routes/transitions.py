"""
API routes for booking state transitions.

POST applies one event to a booking through the booking machine; GET
reports the current machine state and the events it accepts.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from api.dependencies import get_transition_service
from api.models.transition import MachineStateResponse, TransitionRequest, TransitionResponse
from lifecycle.exceptions import BookingNotFoundError, InvalidEventError, PersistenceError
from lifecycle.services.transition_service import TransitionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["transitions"])


@router.post("/xstate-transition", response_model=TransitionResponse)
async def post_transition(
    body: TransitionRequest,
    service: Annotated[TransitionService, Depends(get_transition_service)],
):
    """
    Apply an event to a booking.

    **Returns:**
    - **200**: `{"success": true, "newState": "Approved", ...}`
    - **400**: Unknown event type, or event not valid from the current state
      (`{"error": ..., "rejected": true, "currentState": ...}`)
    - **404**: Booking not found
    - **500**: Booking write failed (`{"error": ..., "newState": ...}`)
    """
    logger.info(
        "Transition requested | event=%s | calendar_event_id=%s | tenant=%s",
        body.event_type,
        body.calendar_event_id,
        body.tenant,
    )
    try:
        result = await service.transition(
            body.calendar_event_id, body.event_type, body.email, body.tenant, body.reason
        )
    except InvalidEventError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except BookingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Transition not persisted for {body.calendar_event_id}: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": e.message, "newState": e.new_state},
        )

    if result.rejected:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": result.error,
                "rejected": True,
                "currentState": result.new_state,
            },
        )

    return TransitionResponse(
        success=True,
        new_state=result.new_state,
        entered=result.entered,
        via_fallback=result.via_fallback,
    )


@router.get("/xstate-transition", response_model=MachineStateResponse)
async def get_transition_state(
    calendar_event_id: Annotated[str, Query(alias="calendarEventId", min_length=1)],
    service: Annotated[TransitionService, Depends(get_transition_service)],
    tenant: str | None = None,
):
    """Current machine state of a booking and the events it accepts."""
    try:
        state = await service.describe(calendar_event_id, tenant)
    except BookingNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MachineStateResponse.model_validate(state)
