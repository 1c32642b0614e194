from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    PENDING = "pending"      # Created from confirmed bookings, awaiting admin confirmation
    CONFIRMED = "confirmed"
    ACTIVE = "active"        # Units have left the warehouse
    COMPLETED = "completed"  # Units returned
    CANCELLED = "cancelled"


# Read-time only: an active order past its end date. Never stored.
OVERDUE = "overdue"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    REFUNDED = "refunded"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    RETURNED = "returned"


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order_number = fields.CharField(max_length=32, unique=True)
    customer_id = fields.CharField(max_length=64, null=True)
    customer_info = fields.JSONField(default=dict)
    delivery_info = fields.JSONField(default=dict)
    payment_method = fields.CharField(max_length=64, default="")
    start_date = fields.DateField()  # Earliest item start
    end_date = fields.DateField()    # Latest item end
    total_days = fields.IntField()
    subtotal = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    tax = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    total = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    deposit = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.PENDING)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    delivery_status = fields.CharEnumField(DeliveryStatus, default=DeliveryStatus.PENDING)
    notes = fields.TextField(default="")
    cancel_reason = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("status",),                 # Status-based filtering
            ("customer_id",),            # Customer order history
            ("created_at",),             # Time-based queries
            ("status", "end_date"),      # Overdue lookups
        ]


class OrderItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="items")
    tool = fields.ForeignKeyField("models.Tool", related_name="order_items")
    # Every line item carries the booking that holds its capacity
    booking = fields.OneToOneField("models.Booking", related_name="order_item")
    tool_name = fields.CharField(max_length=255)
    quantity = fields.IntField()
    price_per_day = fields.DecimalField(max_digits=12, decimal_places=2)
    days = fields.IntField()
    start_date = fields.DateField()
    end_date = fields.DateField()
    total = fields.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        table = "order_items"
        indexes = [
            ("order_id",),
            ("tool_id",),
        ]


class OrderStatusEvent(models.Model):
    """Append-only audit trail of order status changes."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="status_history")
    from_status = fields.CharField(max_length=32, null=True)
    to_status = fields.CharField(max_length=32)
    note = fields.TextField(default="")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "order_status_events"
        ordering = ["created_at"]
