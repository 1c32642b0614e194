"""
Availability ledger.

Free capacity for a tool over a window is always derived from the bookings that
currently hold units, never read from a cached counter: total_stock minus the
quantities of every committed booking whose [start_date, end_date) overlaps the
window. Committed means confirmed, active, or pending with an unexpired hold.
"""
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Tuple
from uuid import UUID

from app.core.clock import as_utc, utcnow
from app.core.errors import InvalidInput, InvalidRange, NotFound
from app.models.booking import Booking, BookingStatus, COMMITTED_STATUSES
from app.models.tool import Tool


@dataclass(frozen=True)
class Availability:
    tool_id: UUID
    start_date: date
    end_date: date
    quantity: int
    total_stock: int
    committed_quantity: int
    free_quantity: int
    is_available: bool
    can_book: bool

    def as_dict(self):
        return asdict(self)


def validate_range(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date is None or end_date is None:
        raise InvalidRange("Both startDate and endDate are required.")
    if start_date >= end_date:
        raise InvalidRange(f"startDate {start_date} must be before endDate {end_date}.")


def validate_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidInput(f"Quantity must be a positive integer, got {quantity!r}")


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open interval overlap: touching ranges ([1,5) and [5,6)) do not overlap."""
    return a_start < b_end and b_start < a_end


def is_committed(booking: Booking, now: datetime) -> bool:
    if booking.status == BookingStatus.PENDING:
        # A lapsed hold stops counting immediately, even before the reaper marks it
        return booking.expires_at is None or as_utc(booking.expires_at) > now
    return booking.status in (BookingStatus.CONFIRMED, BookingStatus.ACTIVE)


def peak_overlap(intervals: Iterable[Tuple[date, date, int]]) -> int:
    """Largest total quantity held at any single instant by (start, end, quantity) intervals."""
    points = []
    for start, end, quantity in intervals:
        points.append((start, 1, quantity))
        points.append((end, 0, -quantity))
    # Ends sort before starts on the same day because the intervals are half-open
    points.sort(key=lambda p: (p[0], p[1]))
    running = peak = 0
    for _, _, delta in points:
        running += delta
        peak = max(peak, running)
    return peak


def _using(queryset, conn: Any):
    return queryset.using_db(conn) if conn is not None else queryset


async def get_tool_or_404(tool_id: UUID, conn: Any = None, for_update: bool = False) -> Tool:
    queryset = _using(Tool.filter(id=tool_id), conn)
    if for_update:
        queryset = queryset.select_for_update()
    tool = await queryset.first()
    if not tool:
        raise NotFound(f"Tool {tool_id} not found.")
    return tool


async def committed_bookings(
    tool_id: UUID,
    start_date: date,
    end_date: date,
    now: Optional[datetime] = None,
    conn: Any = None,
    exclude_booking_id: Optional[UUID] = None,
) -> List[Booking]:
    """Bookings of the tool that hold units somewhere inside [start_date, end_date)."""
    now = as_utc(now) or utcnow()
    queryset = Booking.filter(
        tool_id=tool_id,
        status__in=list(COMMITTED_STATUSES),
        start_date__lt=end_date,
        end_date__gt=start_date,
    )
    if exclude_booking_id is not None:
        queryset = queryset.exclude(id=exclude_booking_id)
    bookings = await _using(queryset, conn)
    return [b for b in bookings if is_committed(b, now)]


async def committed_quantity(
    tool_id: UUID,
    start_date: date,
    end_date: date,
    now: Optional[datetime] = None,
    conn: Any = None,
    exclude_booking_id: Optional[UUID] = None,
) -> int:
    validate_range(start_date, end_date)
    bookings = await committed_bookings(tool_id, start_date, end_date, now, conn, exclude_booking_id)
    return sum(b.quantity for b in bookings)


async def check_availability(
    tool_id: UUID,
    start_date: date,
    end_date: date,
    quantity: int = 1,
    now: Optional[datetime] = None,
    conn: Any = None,
    tool: Optional[Tool] = None,
    exclude_booking_id: Optional[UUID] = None,
) -> Availability:
    """
    Recomputes free capacity for the window from scratch.

    Callers that go on to write (reserve/confirm) must call this while holding
    the tool lock and pass their transaction connection and locked tool row.
    """
    validate_range(start_date, end_date)
    validate_quantity(quantity)
    if tool is None:
        tool = await get_tool_or_404(tool_id, conn)

    committed = await committed_quantity(
        tool.id, start_date, end_date, now=now, conn=conn, exclude_booking_id=exclude_booking_id
    )
    free = max(0, tool.total_stock - committed)
    bookable = tool.is_bookable

    return Availability(
        tool_id=tool.id,
        start_date=start_date,
        end_date=end_date,
        quantity=quantity,
        total_stock=tool.total_stock,
        committed_quantity=committed,
        free_quantity=free,
        is_available=bookable and free > 0,
        can_book=bookable and free >= quantity,
    )


async def peak_commitment(
    tool_id: UUID, from_date: date, now: Optional[datetime] = None, conn: Any = None
) -> int:
    """Highest number of units committed at any instant on or after from_date."""
    now = as_utc(now) or utcnow()
    queryset = Booking.filter(
        tool_id=tool_id, status__in=list(COMMITTED_STATUSES), end_date__gt=from_date
    )
    bookings = [b for b in await _using(queryset, conn) if is_committed(b, now)]
    return peak_overlap((max(b.start_date, from_date), b.end_date, b.quantity) for b in bookings)


async def outstanding_commitments(
    tool_id: UUID, from_date: date, now: Optional[datetime] = None, conn: Any = None
) -> int:
    """Number of committed bookings that have not yet ended by from_date."""
    now = as_utc(now) or utcnow()
    queryset = Booking.filter(
        tool_id=tool_id, status__in=list(COMMITTED_STATUSES), end_date__gt=from_date
    )
    return len([b for b in await _using(queryset, conn) if is_committed(b, now)])


async def units_out(tool_id: UUID, conn: Any = None) -> int:
    """Units physically with customers: quantities of active bookings."""
    bookings = await _using(Booking.filter(tool_id=tool_id, status=BookingStatus.ACTIVE), conn)
    return sum(b.quantity for b in bookings)
