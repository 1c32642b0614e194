from enum import Enum
from tortoise import fields, models
import uuid


class MovementKind(str, Enum):
    INITIAL = "initial"                # Tool registered with its starting units
    CHECKOUT = "checkout"              # Order went active, units left the warehouse
    RETURN = "return"                  # Order completed, units came back
    CANCEL_RESTORE = "cancel_restore"  # Active order cancelled, units came back
    CORRECTION = "correction"          # Administrative stock correction


class StockMovement(models.Model):
    """
    Append-only inventory ledger. Each change to a tool's in_stock/total_stock is
    written here in the same transaction that updates the tool row, so the tool
    counters always equal the running sum of this table.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    tool = fields.ForeignKeyField("models.Tool", related_name="stock_movements")
    kind = fields.CharEnumField(MovementKind)
    in_stock_delta = fields.IntField(default=0)
    total_stock_delta = fields.IntField(default=0)
    in_stock_after = fields.IntField()
    total_stock_after = fields.IntField()
    order_id = fields.UUIDField(null=True)
    note = fields.TextField(default="")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "stock_movements"
        ordering = ["created_at"]
        indexes = [
            ("tool_id", "created_at"),
        ]
