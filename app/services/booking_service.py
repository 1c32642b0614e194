"""
Booking / reservation manager.

reserve() places a pending hold that counts against capacity until it is
confirmed, cancelled, or its hold window lapses. Every write runs under the
tool's lock and inside one transaction, and capacity is recomputed inside that
scope, so two callers racing for the last unit cannot both succeed.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, List, Optional
from uuid import UUID

from tortoise.transactions import in_transaction

from app.core.clock import as_utc, utcnow
from app.core.config import HOLD_TIMEOUT_MINUTES
from app.core.errors import (
    AlreadyConfirmed,
    AlreadyExpired,
    CapacityExceeded,
    InvalidInput,
    InvalidTransition,
    NotFound,
)
from app.core.locks import tool_locks
from app.events.outbox_utility import create_outbox_event
from app.models.booking import Booking, BookingStatus
from app.models.order import OrderItem
from app.models.tool import Tool
from app.services import pricing
from app.services.availability import (
    check_availability,
    get_tool_or_404,
    validate_quantity,
    validate_range,
)

log = logging.getLogger(__name__)


def _booking_payload(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "tool_id": booking.tool_id,
        "customer_id": booking.customer_id,
        "start_date": booking.start_date,
        "end_date": booking.end_date,
        "quantity": booking.quantity,
        "status": booking.status,
        "total_price": booking.total_price,
    }


def hold_has_lapsed(booking: Booking, now: datetime) -> bool:
    return (
        booking.status == BookingStatus.PENDING
        and booking.expires_at is not None
        and as_utc(booking.expires_at) <= now
    )


async def _get_booking_for_update(booking_id: UUID, conn: Any) -> Booking:
    booking = await Booking.filter(id=booking_id).using_db(conn).select_for_update().first()
    if not booking:
        raise NotFound(f"Booking {booking_id} not found.")
    return booking


async def _tool_id_of(booking_id: UUID) -> UUID:
    row = await Booking.filter(id=booking_id).values_list("tool_id", flat=True)
    if not row:
        raise NotFound(f"Booking {booking_id} not found.")
    return row[0]


async def create_committed_booking(
    tool: Tool,
    start_date: date,
    end_date: date,
    quantity: int,
    status: BookingStatus,
    conn: Any,
    customer_id: Optional[str] = None,
    notes: str = "",
    now: Optional[datetime] = None,
    hold_minutes: Optional[int] = None,
) -> Booking:
    """
    Capacity check plus insert, for callers already holding the tool lock and
    a transaction with the tool row locked.
    """
    now = as_utc(now) or utcnow()
    availability = await check_availability(
        tool.id, start_date, end_date, quantity, now=now, conn=conn, tool=tool
    )
    if not availability.can_book:
        log.warning(
            f"Capacity exceeded for tool {tool.id} [{start_date}, {end_date}): "
            f"requested {quantity}, free {availability.free_quantity}"
        )
        raise CapacityExceeded(
            f"Only {availability.free_quantity} of {availability.total_stock} units of "
            f"'{tool.name}' are free between {start_date} and {end_date}; requested {quantity}.",
            details=availability.as_dict(),
        )

    days = (end_date - start_date).days
    total = pricing.line_total(tool.price, days, quantity)
    fields = dict(
        tool=tool,
        customer_id=customer_id,
        start_date=start_date,
        end_date=end_date,
        quantity=quantity,
        status=status,
        price_per_day=tool.price,
        days=days,
        total_price=total,
        notes=notes or "",
    )
    if status == BookingStatus.PENDING:
        fields["expires_at"] = now + timedelta(minutes=hold_minutes or HOLD_TIMEOUT_MINUTES)
    elif status == BookingStatus.CONFIRMED:
        fields["confirmed_at"] = now
    return await Booking.create(using_db=conn, **fields)


async def reserve(
    tool_id: UUID,
    start_date: date,
    end_date: date,
    quantity: int,
    customer_id: Optional[str] = None,
    notes: str = "",
    hold_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """Places a pending hold on `quantity` units for [start_date, end_date)."""
    validate_range(start_date, end_date)
    validate_quantity(quantity)
    if hold_minutes is not None and hold_minutes <= 0:
        raise InvalidInput("Hold window must be positive.")

    async with tool_locks.hold([tool_id]):
        async with in_transaction() as conn:
            tool = await get_tool_or_404(tool_id, conn, for_update=True)
            booking = await create_committed_booking(
                tool, start_date, end_date, quantity, BookingStatus.PENDING, conn,
                customer_id=customer_id, notes=notes, now=now, hold_minutes=hold_minutes,
            )
            await create_outbox_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="booking.reserved.v1",
                payload=_booking_payload(booking),
                conn=conn
            )

    log.info(f"Booking {booking.id} reserved {quantity} x tool {tool_id} [{start_date}, {end_date}), hold until {booking.expires_at}")
    return booking


async def confirm_booking(booking_id: UUID, now: Optional[datetime] = None) -> Booking:
    """
    Turns a pending hold into a confirmed commitment.

    Capacity is re-validated because other holds may have been placed or
    lapsed since the reservation. A hold found past its expiry is persisted as
    expired before AlreadyExpired is raised.
    """
    now = as_utc(now) or utcnow()
    tool_id = await _tool_id_of(booking_id)
    lapsed = False

    async with tool_locks.hold([tool_id]):
        async with in_transaction() as conn:
            tool = await get_tool_or_404(tool_id, conn, for_update=True)
            booking = await _get_booking_for_update(booking_id, conn)

            if booking.status == BookingStatus.EXPIRED:
                raise AlreadyExpired(f"Booking {booking_id} hold has expired.")
            if booking.status in (BookingStatus.CONFIRMED, BookingStatus.ACTIVE, BookingStatus.COMPLETED):
                raise AlreadyConfirmed(f"Booking {booking_id} is already {booking.status.value}.")
            if booking.status != BookingStatus.PENDING:
                raise InvalidTransition(f"Cannot confirm a {booking.status.value} booking.")

            if hold_has_lapsed(booking, now):
                await _mark_expired(booking, conn)
                lapsed = True
            else:
                availability = await check_availability(
                    tool.id, booking.start_date, booking.end_date, booking.quantity,
                    now=now, conn=conn, tool=tool, exclude_booking_id=booking.id,
                )
                if not availability.can_book:
                    raise CapacityExceeded(
                        f"Capacity for booking {booking_id} is no longer available.",
                        details=availability.as_dict(),
                    )
                booking.status = BookingStatus.CONFIRMED
                booking.confirmed_at = now
                booking.expires_at = None
                await booking.save(update_fields=["status", "confirmed_at", "expires_at", "updated_at"], using_db=conn)
                await create_outbox_event(
                    aggregate_type="booking",
                    aggregate_id=booking.id,
                    event_type="booking.confirmed.v1",
                    payload=_booking_payload(booking),
                    conn=conn
                )

    if lapsed:
        raise AlreadyExpired(f"Booking {booking_id} hold expired before confirmation.")
    log.info(f"Booking {booking.id} confirmed.")
    return booking


async def cancel_booking(booking_id: UUID, reason: Optional[str] = None, now: Optional[datetime] = None) -> Booking:
    now = as_utc(now) or utcnow()
    tool_id = await _tool_id_of(booking_id)

    async with tool_locks.hold([tool_id]):
        async with in_transaction() as conn:
            booking = await _get_booking_for_update(booking_id, conn)
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise InvalidTransition(f"Cannot cancel a {booking.status.value} booking.")
            if await OrderItem.filter(booking_id=booking.id).using_db(conn).exists():
                raise InvalidTransition(
                    f"Booking {booking_id} belongs to an order; cancel the order instead."
                )

            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = now
            booking.cancel_reason = reason
            await booking.save(update_fields=["status", "cancelled_at", "cancel_reason", "updated_at"], using_db=conn)
            await create_outbox_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="booking.cancelled.v1",
                payload={**_booking_payload(booking), "reason": reason},
                conn=conn
            )

    log.info(f"Booking {booking.id} cancelled. Reason: {reason}")
    return booking


async def _mark_expired(booking: Booking, conn: Any) -> None:
    booking.status = BookingStatus.EXPIRED
    await booking.save(update_fields=["status", "updated_at"], using_db=conn)
    await create_outbox_event(
        aggregate_type="booking",
        aggregate_id=booking.id,
        event_type="booking.expired.v1",
        payload=_booking_payload(booking),
        conn=conn
    )


async def expire_booking(booking_id: UUID, now: Optional[datetime] = None) -> Booking:
    """
    Expires a lapsed pending hold. Any other state (including already expired,
    or a hold that has not lapsed yet) is left untouched.
    """
    now = as_utc(now) or utcnow()
    tool_id = await _tool_id_of(booking_id)

    async with tool_locks.hold([tool_id]):
        async with in_transaction() as conn:
            booking = await _get_booking_for_update(booking_id, conn)
            if hold_has_lapsed(booking, now):
                await _mark_expired(booking, conn)
                log.info(f"Booking {booking.id} hold expired; {booking.quantity} units released.")
    return booking


async def expire_stale_holds(now: Optional[datetime] = None) -> int:
    """Reaper sweep: expires every pending hold past its window. Returns how many changed."""
    now = as_utc(now) or utcnow()
    candidates = await Booking.filter(status=BookingStatus.PENDING, expires_at__lte=now)
    expired = 0
    for candidate in candidates:
        booking = await expire_booking(candidate.id, now=now)
        if booking.status == BookingStatus.EXPIRED:
            expired += 1
    if expired:
        log.info(f"Hold reaper expired {expired} bookings.")
    return expired


async def get_booking(booking_id: UUID) -> Booking:
    booking = await Booking.get_or_none(id=booking_id)
    if not booking:
        raise NotFound(f"Booking {booking_id} not found.")
    return booking


async def list_bookings(
    status: Optional[BookingStatus] = None,
    tool_id: Optional[UUID] = None,
    customer_id: Optional[str] = None,
) -> List[Booking]:
    queryset = Booking.all()
    if status:
        queryset = queryset.filter(status=status)
    if tool_id:
        queryset = queryset.filter(tool_id=tool_id)
    if customer_id:
        queryset = queryset.filter(customer_id=customer_id)
    return await queryset.order_by("-created_at")
