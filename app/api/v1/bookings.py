import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.core.errors import BookingEngineError
from app.models.booking import BookingStatus
from app.schemas.booking import BookingCancelRequest, BookingRequest, BookingResponse
from app.schemas.response import SuccessResponse
from app.services.booking_service import (
    cancel_booking,
    confirm_booking,
    get_booking,
    list_bookings,
    reserve,
)

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_booking_endpoint(request_data: BookingRequest):
    """
    Places a pending hold. The hold counts against capacity until it is
    confirmed, cancelled or expires.
    """
    try:
        booking = await reserve(
            tool_id=request_data.tool_id,
            start_date=request_data.start_date,
            end_date=request_data.end_date,
            quantity=request_data.quantity,
            customer_id=request_data.customer_id,
            notes=request_data.notes,
        )
        return SuccessResponse(data=BookingResponse.model_validate(booking).to_wire())
    except BookingEngineError as e:
        log.warning(f"Booking rejected for tool {request_data.tool_id}: {e.code}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error creating booking: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create booking.")


@router.get("/", response_model=SuccessResponse)
async def list_bookings_endpoint(
    status: Optional[BookingStatus] = None,
    tool_id: Optional[UUID] = Query(None, alias="toolId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
):
    bookings = await list_bookings(status, tool_id, customer_id)
    return SuccessResponse(data=[BookingResponse.model_validate(b).to_wire() for b in bookings])


@router.get("/{booking_id}", response_model=SuccessResponse)
async def get_booking_endpoint(booking_id: UUID):
    booking = await get_booking(booking_id)
    return SuccessResponse(data=BookingResponse.model_validate(booking).to_wire())


@router.put("/{booking_id}/confirm", response_model=SuccessResponse)
async def confirm_booking_endpoint(booking_id: UUID):
    """Confirms a hold after re-checking capacity. Fails with already_expired if the hold lapsed."""
    try:
        booking = await confirm_booking(booking_id)
        return SuccessResponse(data=BookingResponse.model_validate(booking).to_wire())
    except BookingEngineError as e:
        log.warning(f"Confirmation of booking {booking_id} failed: {e.code}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error confirming booking {booking_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to confirm booking.")


@router.put("/{booking_id}/cancel", response_model=SuccessResponse)
async def cancel_booking_endpoint(booking_id: UUID, payload: Optional[BookingCancelRequest] = None):
    reason = payload.reason if payload else None
    booking = await cancel_booking(booking_id, reason)
    return SuccessResponse(data=BookingResponse.model_validate(booking).to_wire())
