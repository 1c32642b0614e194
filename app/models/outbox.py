from tortoise import fields, models
import uuid


class OutboxEvent(models.Model):
    """
    Domain events written in the same transaction as the booking/order change
    that produced them. The poller hands them to the payment, delivery and
    notification processes that live outside the engine.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    aggregate_type = fields.CharField(max_length=64) # 'booking', 'order' or 'tool'
    aggregate_id = fields.UUIDField(null=True)
    event_type = fields.CharField(max_length=128) # e.g., 'booking.reserved.v1'
    payload = fields.JSONField()
    published = fields.BooleanField(default=False)
    attempts = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "outbox_events"
        indexes = [
            ("published", "attempts"),
        ]
