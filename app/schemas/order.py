import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.order import DeliveryStatus, Order, OrderStatus, PaymentStatus
from app.schemas.base import CamelModel
from app.services.order_service import display_status, is_overdue


class CustomerInfo(CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    company: Optional[str] = None


class DeliveryInfo(CamelModel):
    address: str
    date: Optional[str] = None
    time_slot: Optional[str] = None
    instructions: Optional[str] = None


class OrderItemRequest(CamelModel):
    """A line item: either an existing confirmed booking or a tool to book with the order."""
    booking_id: Optional[uuid.UUID] = None
    tool_id: Optional[uuid.UUID] = None
    quantity: Optional[int] = None
    days: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class OrderRequest(CamelModel):
    """Schema for the full order placement request body."""
    items: List[OrderItemRequest]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    customer_id: Optional[str] = None
    customer_info: Optional[CustomerInfo] = None
    delivery_info: Optional[DeliveryInfo] = None
    payment_method: str = ""
    notes: str = ""


class OrderStatusUpdate(CamelModel):
    """Target status is checked against the transition table by the service, not here."""
    status: str
    note: Optional[str] = None


class OrderCancelRequest(CamelModel):
    reason: Optional[str] = None


class FulfillmentUpdate(CamelModel):
    payment_status: Optional[PaymentStatus] = None
    delivery_status: Optional[DeliveryStatus] = None


class OrderItemResponse(CamelModel):
    id: uuid.UUID
    tool_id: uuid.UUID
    booking_id: uuid.UUID
    tool_name: str
    quantity: int
    price_per_day: Decimal
    days: int
    start_date: date
    end_date: date
    total: Decimal


class OrderResponse(CamelModel):
    id: uuid.UUID
    order_number: str
    customer_id: Optional[str] = None
    customer_info: Dict[str, Any] = Field(default_factory=dict)
    delivery_info: Dict[str, Any] = Field(default_factory=dict)
    payment_method: str
    start_date: date
    end_date: date
    total_days: int
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    deposit: Decimal
    status: OrderStatus
    display_status: str
    is_overdue: bool
    payment_status: PaymentStatus
    delivery_status: DeliveryStatus
    notes: str
    cancel_reason: Optional[str] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order, on: Optional[date] = None, with_items: bool = True) -> "OrderResponse":
        items = [OrderItemResponse.model_validate(i) for i in order.items] if with_items else []
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            customer_info=order.customer_info or {},
            delivery_info=order.delivery_info or {},
            payment_method=order.payment_method,
            start_date=order.start_date,
            end_date=order.end_date,
            total_days=order.total_days,
            subtotal=order.subtotal,
            tax=order.tax,
            total=order.total,
            deposit=order.deposit,
            status=order.status,
            display_status=display_status(order, on),
            is_overdue=is_overdue(order, on),
            payment_status=order.payment_status,
            delivery_status=order.delivery_status,
            notes=order.notes,
            cancel_reason=order.cancel_reason,
            items=items,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderStatusEventResponse(CamelModel):
    from_status: Optional[str] = None
    to_status: str
    note: str
    created_at: datetime


class OrderStatisticsResponse(CamelModel):
    total_orders: int
    by_status: Dict[str, int]
    revenue: Decimal
    average_order_value: Decimal
