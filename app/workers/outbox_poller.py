import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from app.models.outbox import OutboxEvent
from app.core.db import init_db, close_db
from app.core.config import POLLING_INTERVAL, MAX_ATTEMPTS, BATCH_SIZE

log = logging.getLogger(__name__)


# ----------- Event handlers -----------
# The engine only reports; payment, delivery and notification processes consume these.

async def notify_customer(event: OutboxEvent):
    payload = event.payload
    log.info(f"NOTIFY customer {payload.get('customer_id')}: {event.event_type} for {event.aggregate_type} {event.aggregate_id}")


async def request_payment(event: OutboxEvent):
    payload = event.payload
    log.info(
        f"PAYMENT requested for order {payload.get('order_number')}: total {payload.get('total')}, "
        f"deposit {payload.get('deposit')} via {payload.get('payment_method') or 'unspecified method'}"
    )


async def request_refund(event: OutboxEvent):
    payload = event.payload
    log.info(f"REFUND required for order {payload.get('order_id')} ({payload.get('payment_status')}): {payload.get('total')}")


async def raise_low_stock_alert(event: OutboxEvent):
    payload = event.payload
    log.warning(f"!!! LOW STOCK !!! Tool {payload.get('tool_id')} has {payload.get('in_stock')} units on the shelf.")


HANDLERS: Dict[str, Callable[[OutboxEvent], Awaitable[Any]]] = {
    "booking.reserved.v1": notify_customer,
    "booking.confirmed.v1": notify_customer,
    "booking.cancelled.v1": notify_customer,
    "booking.expired.v1": notify_customer,
    "order.created.v1": request_payment,
    "order.refund.required.v1": request_refund,
    "order.cancelled.v1": notify_customer,
    "order.fulfillment.updated.v1": notify_customer,
    "inventory.low_stock_alert.v1": raise_low_stock_alert,
}


async def dispatch_event(event: OutboxEvent):
    """Routes an OutboxEvent to its handler. Order status events share one handler."""
    handler = HANDLERS.get(event.event_type)
    if handler is None and event.event_type.startswith("order.status."):
        handler = notify_customer
    if handler is None:
        log.warning(f"No handler found for event type: {event.event_type}")
        return
    await handler(event)


async def poll_outbox_for_new_events() -> int:
    """
    Queries the Outbox table for unpublished events and attempts to dispatch them.
    Returns the number of events published in this pass.
    """
    # Select events that haven't been published and haven't exceeded max attempts
    events = await OutboxEvent.filter(published=False, attempts__lt=MAX_ATTEMPTS).limit(BATCH_SIZE).order_by('created_at')

    published = 0
    for event in events:
        try:
            await dispatch_event(event)
            event.published = True
            await event.save(update_fields=['published'])
            published += 1
        except Exception:
            # Count the failure and retry on a later poll
            event.attempts += 1
            await event.save(update_fields=['attempts'])
            log.exception(f"Dispatch failed for event {event.id} ({event.event_type}), attempt {event.attempts}")
    return published


async def run_outbox_poller():
    """Main loop for the poller."""
    log.info("Outbox poller started.")
    while True:
        try:
            await poll_outbox_for_new_events()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Poller encountered a DB error: {e}")
        await asyncio.sleep(POLLING_INTERVAL)


async def main():
    await init_db()
    try:
        await run_outbox_poller()
    finally:
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
