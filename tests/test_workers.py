import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from app.core.config import MAX_ATTEMPTS
from app.events.outbox_utility import create_outbox_event
from app.models.booking import BookingStatus
from app.models.outbox import OutboxEvent
from app.services.booking_service import get_booking, reserve
from app.workers import outbox_poller
from app.workers.hold_reaper import run_hold_reaper
from app.workers.outbox_poller import dispatch_event, poll_outbox_for_new_events
from tests.conftest import JUN_1, JUN_5, NOW


class TestOutboxPoller:

    @pytest.mark.asyncio
    async def test_publishes_pending_events(self, make_tool):
        """Events written by the engine are dispatched once and marked published"""
        tool = await make_tool()
        await reserve(tool.id, JUN_1, JUN_5, 1, now=NOW)

        with patch.dict(outbox_poller.HANDLERS, {"booking.reserved.v1": AsyncMock()}) as handlers:
            published = await poll_outbox_for_new_events()
            assert published == 1
            handlers["booking.reserved.v1"].assert_awaited_once()

        assert await OutboxEvent.filter(published=False).count() == 0
        assert await poll_outbox_for_new_events() == 0

    @pytest.mark.asyncio
    async def test_failed_dispatch_is_retried(self, db):
        """A handler failure counts an attempt and leaves the event for the next poll"""
        event = await create_outbox_event("order", uuid4(), "order.created.v1", {"total": "10"})
        failing = AsyncMock(side_effect=RuntimeError("payment gateway down"))

        with patch.dict(outbox_poller.HANDLERS, {"order.created.v1": failing}):
            assert await poll_outbox_for_new_events() == 0

        stored = await OutboxEvent.get(id=event.id)
        assert stored.attempts == 1
        assert not stored.published

        assert await poll_outbox_for_new_events() == 1
        assert (await OutboxEvent.get(id=event.id)).published

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, db):
        event = await create_outbox_event("order", uuid4(), "order.created.v1", {})
        event.attempts = MAX_ATTEMPTS
        await event.save()
        assert await poll_outbox_for_new_events() == 0

    @pytest.mark.asyncio
    async def test_status_events_share_notification_handler(self, db):
        event = OutboxEvent(
            aggregate_type="order", aggregate_id=uuid4(),
            event_type="order.status.active.v1", payload={"customer_id": "c-1"},
        )
        with patch('app.workers.outbox_poller.notify_customer', new_callable=AsyncMock) as mock_notify:
            await dispatch_event(event)
            mock_notify.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_skipped(self, db):
        event = OutboxEvent(aggregate_type="x", aggregate_id=uuid4(), event_type="x.unknown.v1", payload={})
        await dispatch_event(event)

    @pytest.mark.asyncio
    async def test_payload_is_plain_json(self, make_tool):
        tool = await make_tool()
        booking = await reserve(tool.id, JUN_1, JUN_5, 1, now=NOW)
        event = await OutboxEvent.get(event_type="booking.reserved.v1")
        assert event.payload["booking_id"] == str(booking.id)
        assert event.payload["start_date"] == "2026-06-01"
        assert event.payload["status"] == "pending"
        assert event.payload["total_price"] == str(booking.total_price)


class TestHoldReaper:

    @pytest.mark.asyncio
    async def test_reaper_loop_expires_lapsed_holds(self, make_tool):
        tool = await make_tool()
        booking = await reserve(tool.id, JUN_1, JUN_5, 1, hold_minutes=1, now=NOW)

        with patch('app.services.booking_service.utcnow', return_value=NOW + timedelta(minutes=5)):
            task = asyncio.create_task(run_hold_reaper(interval=0.01))
            await asyncio.sleep(0.1)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert (await get_booking(booking.id)).status == BookingStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_reaper_survives_failed_sweep(self):
        sweep = AsyncMock(side_effect=[RuntimeError("db locked"), 0, 0, 0, 0, 0, 0, 0, 0, 0])
        with patch('app.workers.hold_reaper.expire_stale_holds', sweep):
            task = asyncio.create_task(run_hold_reaper(interval=0.01))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert sweep.await_count >= 2
