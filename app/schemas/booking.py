import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from app.models.booking import BookingStatus
from app.schemas.base import CamelModel


class BookingRequest(CamelModel):
    """Schema for a reservation request. Range and quantity are checked by the booking engine."""
    tool_id: uuid.UUID
    start_date: date
    end_date: date
    quantity: int = 1
    customer_id: Optional[str] = None
    notes: str = ""


class BookingCancelRequest(CamelModel):
    reason: Optional[str] = None


class BookingResponse(CamelModel):
    id: uuid.UUID
    tool_id: uuid.UUID
    customer_id: Optional[str] = None
    start_date: date
    end_date: date
    quantity: int
    status: BookingStatus
    price_per_day: Decimal
    days: int
    total_price: Decimal
    notes: str
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
