from enum import Enum
from tortoise import fields, models
import uuid


class BookingStatus(str, Enum):
    PENDING = "pending"      # Tentative hold, lapses at expires_at
    CONFIRMED = "confirmed"  # Checkout succeeded, capacity is promised
    ACTIVE = "active"        # Units are out with the customer (order is active)
    COMPLETED = "completed"  # Units returned, commitment released
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses whose quantity counts against capacity. PENDING only counts while unexpired.
COMMITTED_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE)


class Booking(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tool = fields.ForeignKeyField("models.Tool", related_name="bookings")
    customer_id = fields.CharField(max_length=64, null=True)
    start_date = fields.DateField()
    end_date = fields.DateField() # Exclusive: the booking covers [start_date, end_date)
    quantity = fields.IntField()
    status = fields.CharEnumField(BookingStatus, default=BookingStatus.PENDING)
    price_per_day = fields.DecimalField(max_digits=12, decimal_places=2)
    days = fields.IntField()
    total_price = fields.DecimalField(max_digits=14, decimal_places=2)
    notes = fields.TextField(default="")
    expires_at = fields.DatetimeField(null=True)
    confirmed_at = fields.DatetimeField(null=True)
    cancelled_at = fields.DatetimeField(null=True)
    cancel_reason = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bookings"
        indexes = [
            ("tool_id", "status"),                           # Ledger scans
            ("tool_id", "start_date", "end_date"),           # Overlap queries
            ("status", "expires_at"),                        # Hold reaper
            ("customer_id",),
        ]
