# app/models/__init__.py
from .tool import Tool, ToolStatus
from .booking import Booking, BookingStatus, COMMITTED_STATUSES
from .order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusEvent,
    PaymentStatus,
    DeliveryStatus,
    OVERDUE,
)
from .ledger import StockMovement, MovementKind
from .outbox import OutboxEvent

# Export all models
__all__ = [
    "Tool",
    "ToolStatus",
    "Booking",
    "BookingStatus",
    "COMMITTED_STATUSES",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusEvent",
    "PaymentStatus",
    "DeliveryStatus",
    "OVERDUE",
    "StockMovement",
    "MovementKind",
    "OutboxEvent",
]
