from enum import Enum
from tortoise import fields, models
import uuid


class ToolStatus(str, Enum):
    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class Tool(models.Model):
    """
    A rentable item type with a pooled unit count.

    total_stock is the number of physical units owned; in_stock is the number
    currently on the shelf. Both are materialized counters of the StockMovement
    ledger and are changed only through app.services.inventory_service.
    status is advisory display state; date-scoped availability comes from the
    availability ledger.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    brand = fields.CharField(max_length=128, default="")
    category = fields.CharField(max_length=128)
    subcategory = fields.CharField(max_length=128, default="")
    description = fields.TextField(default="")
    price = fields.DecimalField(max_digits=12, decimal_places=2) # Daily base price
    total_stock = fields.IntField(default=0)
    in_stock = fields.IntField(default=0)
    status = fields.CharEnumField(ToolStatus, default=ToolStatus.AVAILABLE)
    is_active = fields.BooleanField(default=True)
    total_rentals = fields.IntField(default=0)
    total_revenue = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "tools"
        indexes = [
            ("category",),
            ("status",),
            ("category", "subcategory"),
        ]

    @property
    def is_bookable(self) -> bool:
        return self.is_active and self.status not in (ToolStatus.RETIRED, ToolStatus.MAINTENANCE)
