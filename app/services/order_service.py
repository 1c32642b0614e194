import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from tortoise.transactions import in_transaction

from app.core.clock import as_utc, today, utcnow
from app.core.config import DEPOSIT_RATE, TAX_RATE
from app.core.errors import (
    AlreadyExpired,
    CapacityExceeded,
    InvalidInput,
    InvalidTransition,
    NotFound,
)
from app.core.locks import tool_locks
from app.events.outbox_utility import create_outbox_event
from app.models.booking import Booking, BookingStatus
from app.models.ledger import MovementKind
from app.models.order import (
    OVERDUE,
    DeliveryStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusEvent,
    PaymentStatus,
)
from app.models.tool import Tool
from app.services.availability import get_tool_or_404, validate_quantity, validate_range
from app.services.booking_service import create_committed_booking
from app.services.inventory_service import apply_stock_delta
from app.services.pagination import DEFAULT_PAGE_SIZE, Page, paginate
from app.services.pricing import round_money

log = logging.getLogger(__name__)


# The only legal status changes. Anything else is rejected with InvalidTransition.
TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.ACTIVE, OrderStatus.CANCELLED}),
    OrderStatus.ACTIVE: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Booking status that mirrors each order status
BOOKING_STATUS_FOR = {
    OrderStatus.ACTIVE: BookingStatus.ACTIVE,
    OrderStatus.COMPLETED: BookingStatus.COMPLETED,
    OrderStatus.CANCELLED: BookingStatus.CANCELLED,
}


@dataclass
class OrderItemSpec:
    """One requested line: either an existing confirmed booking or a tool to book now."""
    booking_id: Optional[UUID] = None
    tool_id: Optional[UUID] = None
    quantity: Optional[int] = None
    days: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    # Filled in while resolving
    booking: Optional[Booking] = field(default=None, repr=False)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).lower())
    except ValueError:
        # 'overdue' is derived from dates and can never be set directly
        raise InvalidTransition(f"'{value}' is not a status an order can be moved to.")


def is_overdue(order: Order, on: Optional[date] = None) -> bool:
    """Active and past its end date. Evaluated at read time, never stored."""
    return order.status == OrderStatus.ACTIVE and (on or today()) > order.end_date


def display_status(order: Order, on: Optional[date] = None) -> str:
    return OVERDUE if is_overdue(order, on) else order.status.value


def generate_order_number(now: datetime) -> str:
    return f"ORD-{now:%y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _as_spec(item: Union[OrderItemSpec, Dict[str, Any]]) -> OrderItemSpec:
    if isinstance(item, OrderItemSpec):
        return item
    return OrderItemSpec(**{k: v for k, v in item.items() if k in OrderItemSpec.__dataclass_fields__ and k != "booking"})


def _resolve_dates(spec: OrderItemSpec, start_date: Optional[date], end_date: Optional[date]) -> None:
    spec.start_date = spec.start_date or start_date
    spec.end_date = spec.end_date or end_date
    if spec.start_date and not spec.end_date and spec.days:
        # Same as the catalog form: the end date follows from start + days
        spec.end_date = spec.start_date + timedelta(days=spec.days)
    validate_range(spec.start_date, spec.end_date)
    span = (spec.end_date - spec.start_date).days
    if spec.days is not None and spec.days != span:
        raise InvalidInput(
            f"Item days ({spec.days}) does not match its date range {spec.start_date}..{spec.end_date} ({span} days)."
        )
    spec.days = span


async def create_order(
    items: List[Union[OrderItemSpec, Dict[str, Any]]],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    customer_info: Optional[Dict[str, Any]] = None,
    delivery_info: Optional[Dict[str, Any]] = None,
    payment_method: str = "",
    notes: str = "",
    customer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Creates a pending order from confirmed bookings.

    Items that name a booking must reference a confirmed booking that no other
    order owns. Items that name a tool are booked and confirmed here, under the
    tool lock, in the same transaction as the order, so the whole order is
    created or nothing is.
    """
    now = as_utc(now) or utcnow()
    if not items:
        raise InvalidInput("Order must contain items.")
    specs = [_as_spec(item) for item in items]

    # Validate everything that needs no lock first
    for spec in specs:
        if spec.booking_id is None:
            if spec.tool_id is None:
                raise InvalidInput("Each item needs either a bookingId or a toolId.")
            validate_quantity(spec.quantity)
            _resolve_dates(spec, start_date, end_date)

    booking_tools = {}
    booking_ids = [s.booking_id for s in specs if s.booking_id is not None]
    if len(set(booking_ids)) != len(booking_ids):
        raise InvalidInput("The same booking is listed twice.")
    if booking_ids:
        rows = await Booking.filter(id__in=booking_ids).values("id", "tool_id")
        booking_tools = {row["id"]: row["tool_id"] for row in rows}
        missing = [b for b in booking_ids if b not in booking_tools]
        if missing:
            raise NotFound(f"Booking {missing[0]} not found.")

    tool_ids = {s.tool_id for s in specs if s.tool_id is not None} | set(booking_tools.values())

    async with tool_locks.hold(tool_ids):
        async with in_transaction() as conn:
            tools: Dict[UUID, Tool] = {}
            for tool_id in sorted(tool_ids, key=str):
                tools[tool_id] = await get_tool_or_404(tool_id, conn, for_update=True)

            if booking_ids:
                locked = await Booking.filter(id__in=booking_ids).using_db(conn).select_for_update()
                locked_map = {b.id: b for b in locked}
                owned = await OrderItem.filter(booking_id__in=booking_ids).using_db(conn).values_list("booking_id", flat=True)
                if owned:
                    raise InvalidTransition(f"Booking {owned[0]} already belongs to an order.")

            for spec in specs:
                if spec.booking_id is not None:
                    booking = locked_map[spec.booking_id]
                    if booking.status == BookingStatus.EXPIRED:
                        raise AlreadyExpired(f"Booking {booking.id} hold has expired.")
                    if booking.status != BookingStatus.CONFIRMED:
                        raise InvalidTransition(
                            f"Booking {booking.id} is {booking.status.value}; only confirmed bookings can be ordered."
                        )
                    spec.booking = booking
                else:
                    spec.booking = await create_committed_booking(
                        tools[spec.tool_id], spec.start_date, spec.end_date, spec.quantity,
                        BookingStatus.CONFIRMED, conn, customer_id=customer_id, now=now,
                    )

            bookings = [s.booking for s in specs]
            order_start = min(b.start_date for b in bookings)
            order_end = max(b.end_date for b in bookings)
            subtotal = sum((b.total_price for b in bookings), Decimal("0"))
            tax = round_money(subtotal * TAX_RATE)
            total = subtotal + tax
            deposit = round_money(total * DEPOSIT_RATE)

            order = await Order.create(
                order_number=generate_order_number(now),
                customer_id=customer_id,
                customer_info=customer_info or {},
                delivery_info=delivery_info or {},
                payment_method=payment_method or "",
                start_date=order_start,
                end_date=order_end,
                total_days=(order_end - order_start).days,
                subtotal=subtotal,
                tax=tax,
                total=total,
                deposit=deposit,
                status=OrderStatus.PENDING,
                notes=notes or "",
                using_db=conn
            )

            event_items_payload = []
            for booking in bookings:
                tool = tools[booking.tool_id]
                await OrderItem.create(
                    order=order,
                    tool=tool,
                    booking=booking,
                    tool_name=tool.name,
                    quantity=booking.quantity,
                    price_per_day=booking.price_per_day,
                    days=booking.days,
                    start_date=booking.start_date,
                    end_date=booking.end_date,
                    total=booking.total_price,
                    using_db=conn
                )
                event_items_payload.append({
                    "tool_id": tool.id,
                    "booking_id": booking.id,
                    "quantity": booking.quantity,
                    "start_date": booking.start_date,
                    "end_date": booking.end_date,
                    "total": booking.total_price,
                })

            await OrderStatusEvent.create(
                order=order, from_status=None, to_status=OrderStatus.PENDING.value,
                note="Order created", using_db=conn
            )

            # Contract point for the payment process
            await create_outbox_event(
                aggregate_type="order",
                aggregate_id=order.id,
                event_type="order.created.v1",
                payload={
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "customer_id": customer_id,
                    "payment_method": order.payment_method,
                    "subtotal": subtotal,
                    "tax": tax,
                    "total": total,
                    "deposit": deposit,
                    "items": event_items_payload,
                },
                conn=conn
            )

    log.info(f"Order {order.order_number} ({order.id}) created with {len(bookings)} items, total {order.total}.")
    return order


async def get_order_by_id(order_id: UUID) -> Order:
    """Fetches an order with its line items."""
    order = await Order.get_or_none(id=order_id).prefetch_related("items")
    if not order:
        raise NotFound(f"Order {order_id} not found.")
    return order


def _order_queryset(
    status: Optional[str] = None,
    customer_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    on: Optional[date] = None,
):
    queryset = Order.all()
    if status == OVERDUE:
        queryset = queryset.filter(status=OrderStatus.ACTIVE, end_date__lt=on or today())
    elif status:
        try:
            queryset = queryset.filter(status=OrderStatus(status))
        except ValueError:
            raise InvalidInput(f"Unknown order status '{status}'.")
    if customer_id:
        queryset = queryset.filter(customer_id=customer_id)
    if start_date:
        queryset = queryset.filter(end_date__gt=start_date)
    if end_date:
        queryset = queryset.filter(start_date__lt=end_date)
    return queryset.order_by("-created_at").prefetch_related("items")


async def list_orders(**filters) -> List[Order]:
    """Lists orders; status may be 'overdue', which is derived from active orders' end dates."""
    return await _order_queryset(**filters)


async def list_orders_page(page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters) -> Page:
    """Newest orders first, one page at a time."""
    return await paginate(_order_queryset(**filters), page, limit)


async def order_history(order_id: UUID) -> List[OrderStatusEvent]:
    if not await Order.filter(id=order_id).exists():
        raise NotFound(f"Order {order_id} not found.")
    return await OrderStatusEvent.filter(order_id=order_id).order_by("created_at")


async def _item_tool_ids(order_id: UUID) -> List[UUID]:
    if not await Order.filter(id=order_id).exists():
        raise NotFound(f"Order {order_id} not found.")
    return list(await OrderItem.filter(order_id=order_id).values_list("tool_id", flat=True))


async def _start_rental(order: Order, items: List[OrderItem], tools: Dict[UUID, Tool], conn: Any) -> None:
    """confirmed -> active: units leave the warehouse."""
    needed: Dict[UUID, int] = {}
    for item in items:
        needed[item.tool_id] = needed.get(item.tool_id, 0) + item.quantity
    for tool_id, quantity in needed.items():
        tool = tools[tool_id]
        if tool.in_stock < quantity:
            raise CapacityExceeded(
                f"Only {tool.in_stock} units of '{tool.name}' are on the shelf; order needs {quantity}."
            )
    for item in items:
        await apply_stock_delta(
            tools[item.tool_id], MovementKind.CHECKOUT, in_stock_delta=-item.quantity,
            order_id=order.id, note=f"Order {order.order_number} started", conn=conn,
        )


async def _complete_rental(order: Order, items: List[OrderItem], tools: Dict[UUID, Tool], conn: Any) -> None:
    """active -> completed: units come back, rental counters are credited."""
    for item in items:
        tool = tools[item.tool_id]
        await apply_stock_delta(
            tool, MovementKind.RETURN, in_stock_delta=item.quantity,
            order_id=order.id, note=f"Order {order.order_number} returned", conn=conn,
        )
        tool.total_rentals += 1
        tool.total_revenue += item.total
        await tool.save(update_fields=["total_rentals", "total_revenue", "updated_at"], using_db=conn)
    order.delivery_status = DeliveryStatus.RETURNED


async def _cancel(order: Order, items: List[OrderItem], tools: Dict[UUID, Tool], conn: Any, reason: Optional[str]) -> None:
    if order.status == OrderStatus.ACTIVE:
        for item in items:
            await apply_stock_delta(
                tools[item.tool_id], MovementKind.CANCEL_RESTORE, in_stock_delta=item.quantity,
                order_id=order.id, note=f"Order {order.order_number} cancelled while active", conn=conn,
            )
    order.cancel_reason = reason
    if order.payment_status in (PaymentStatus.PAID, PaymentStatus.PARTIAL):
        # Contract point for the payment process; the refund itself happens there
        await create_outbox_event(
            aggregate_type="order",
            aggregate_id=order.id,
            event_type="order.refund.required.v1",
            payload={
                "order_id": order.id,
                "payment_status": order.payment_status,
                "total": order.total,
                "deposit": order.deposit,
                "reason": reason,
            },
            conn=conn
        )


async def update_order_status(
    order_id: UUID,
    new_status: Union[str, OrderStatus],
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Applies one transition from TRANSITIONS, with its inventory side effects,
    audit row and outbox event, all in one transaction.
    """
    target = parse_status(new_status)
    tool_ids = await _item_tool_ids(order_id)

    async with tool_locks.hold(tool_ids):
        async with in_transaction() as conn:
            order = await Order.filter(id=order_id).using_db(conn).select_for_update().first()
            if not order:
                raise NotFound(f"Order {order_id} not found.")

            old_status = order.status
            if not can_transition(old_status, target):
                raise InvalidTransition(
                    f"Order {order.order_number} cannot move from {old_status.value} to {target.value}."
                )

            items = await OrderItem.filter(order_id=order.id).using_db(conn)
            tools: Dict[UUID, Tool] = {}
            for tool_id in sorted({i.tool_id for i in items}, key=str):
                tools[tool_id] = await get_tool_or_404(tool_id, conn, for_update=True)

            if target == OrderStatus.ACTIVE:
                await _start_rental(order, items, tools, conn)
            elif target == OrderStatus.COMPLETED:
                await _complete_rental(order, items, tools, conn)
            elif target == OrderStatus.CANCELLED:
                await _cancel(order, items, tools, conn, reason=note)

            booking_status = BOOKING_STATUS_FOR.get(target)
            if booking_status is not None:
                update = {"status": booking_status}
                if booking_status == BookingStatus.CANCELLED:
                    update.update(cancelled_at=as_utc(now) or utcnow(), cancel_reason=note)
                await Booking.filter(id__in=[i.booking_id for i in items]).using_db(conn).update(**update)

            order.status = target
            await order.save(using_db=conn)

            await OrderStatusEvent.create(
                order=order, from_status=old_status.value, to_status=target.value,
                note=note or "", using_db=conn
            )

            event_type = f"order.status.{target.value}.v1"
            payload = {
                "order_id": order.id,
                "order_number": order.order_number,
                "old_status": old_status,
                "new_status": target,
                "customer_id": order.customer_id,
                "note": note,
            }
            if target == OrderStatus.CANCELLED:
                event_type = "order.cancelled.v1"
                payload["items"] = [
                    {"tool_id": i.tool_id, "booking_id": i.booking_id, "quantity": i.quantity}
                    for i in items
                ]
            await create_outbox_event(
                aggregate_type="order",
                aggregate_id=order.id,
                event_type=event_type,
                payload=payload,
                conn=conn
            )

    log.info(f"Order {order.order_number} moved {old_status.value} -> {target.value}. Note: {note}")
    return order


async def cancel_order(order_id: UUID, reason: Optional[str] = None, now: Optional[datetime] = None) -> Order:
    """Cancels a pending, confirmed or active order and releases its commitments."""
    return await update_order_status(order_id, OrderStatus.CANCELLED, note=reason, now=now)


async def update_fulfillment(
    order_id: UUID,
    payment_status: Optional[PaymentStatus] = None,
    delivery_status: Optional[DeliveryStatus] = None,
) -> Order:
    """Records payment/delivery progress reported by the external processes."""
    async with in_transaction() as conn:
        order = await Order.filter(id=order_id).using_db(conn).select_for_update().first()
        if not order:
            raise NotFound(f"Order {order_id} not found.")

        if payment_status is not None and payment_status != order.payment_status:
            if order.payment_status == PaymentStatus.REFUNDED:
                raise InvalidTransition("A refunded order cannot change payment status.")
            order.payment_status = payment_status

        if delivery_status is not None and delivery_status != order.delivery_status:
            if order.status in (OrderStatus.CANCELLED, OrderStatus.COMPLETED):
                raise InvalidTransition(f"Delivery of a {order.status.value} order cannot change.")
            if delivery_status == DeliveryStatus.DELIVERED and order.status != OrderStatus.ACTIVE:
                raise InvalidTransition("Only an active order can be marked delivered.")
            if delivery_status == DeliveryStatus.RETURNED:
                raise InvalidTransition("Returns are recorded by completing the order.")
            order.delivery_status = delivery_status

        await order.save(update_fields=["payment_status", "delivery_status", "updated_at"], using_db=conn)
        await create_outbox_event(
            aggregate_type="order",
            aggregate_id=order.id,
            event_type="order.fulfillment.updated.v1",
            payload={
                "order_id": order.id,
                "payment_status": order.payment_status,
                "delivery_status": order.delivery_status,
            },
            conn=conn
        )

    log.info(f"Order {order.order_number} fulfillment: payment={order.payment_status.value}, delivery={order.delivery_status.value}")
    return order


async def order_statistics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    on: Optional[date] = None,
) -> Dict[str, Any]:
    """Counts per display status plus revenue figures for orders starting in the window."""
    queryset = Order.all()
    if start_date:
        queryset = queryset.filter(start_date__gte=start_date)
    if end_date:
        queryset = queryset.filter(start_date__lt=end_date)
    orders = await queryset

    by_status = {s.value: 0 for s in OrderStatus}
    by_status[OVERDUE] = 0
    revenue = Decimal("0")
    billable = []
    for order in orders:
        by_status[display_status(order, on)] += 1
        if order.status == OrderStatus.COMPLETED:
            revenue += order.total
        if order.status != OrderStatus.CANCELLED:
            billable.append(order.total)

    average = round_money(sum(billable, Decimal("0")) / len(billable)) if billable else round_money(Decimal("0"))
    return {
        "total_orders": len(orders),
        "by_status": by_status,
        "revenue": round_money(revenue),
        "average_order_value": average,
    }
