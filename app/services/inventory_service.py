import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from app.core.clock import today
from app.core.config import LOW_STOCK_THRESHOLD
from app.core.errors import InvalidInput
from app.core.locks import tool_locks
from app.events.outbox_utility import create_outbox_event
from app.models.ledger import MovementKind, StockMovement
from app.models.tool import Tool, ToolStatus
from app.services.availability import (
    get_tool_or_404,
    outstanding_commitments,
    peak_commitment,
    units_out,
)
from app.services.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, Page, paginate
from app.services.pricing import to_decimal

log = logging.getLogger(__name__)


async def _sync_display_status(tool: Tool, kind: MovementKind, conn: Any) -> None:
    """Flips the advisory status between available and rented; leaves maintenance/retired alone."""
    if tool.status not in (ToolStatus.AVAILABLE, ToolStatus.RENTED):
        return
    if tool.in_stock > 0:
        tool.status = ToolStatus.AVAILABLE
        return
    # Empty shelf only means rented when units are actually with customers
    rented = kind == MovementKind.CHECKOUT or await units_out(tool.id, conn) > 0
    tool.status = ToolStatus.RENTED if rented else ToolStatus.AVAILABLE


async def check_for_low_stock(tool: Tool, order_id: Optional[UUID], conn: Any):
    """Emits an alert event when the shelf count drops to the low-stock threshold."""
    if tool.in_stock <= LOW_STOCK_THRESHOLD:
        log.warning(f"Low stock for tool {tool.id} ({tool.name}): {tool.in_stock} on shelf")
        await create_outbox_event(
            aggregate_type="tool",
            aggregate_id=tool.id,
            event_type="inventory.low_stock_alert.v1",
            payload={
                "tool_id": tool.id,
                "in_stock": tool.in_stock,
                "total_stock": tool.total_stock,
                "threshold": LOW_STOCK_THRESHOLD,
                "triggered_by_order_id": order_id,
            },
            conn=conn
        )


async def apply_stock_delta(
    tool: Tool,
    kind: MovementKind,
    in_stock_delta: int = 0,
    total_stock_delta: int = 0,
    order_id: Optional[UUID] = None,
    note: str = "",
    conn: Any = None,
) -> StockMovement:
    """
    Moves a tool's counters and appends the matching ledger row.

    The tool must already be locked by the caller (tool lock + select_for_update)
    and conn must be the caller's transaction.
    """
    new_in_stock = tool.in_stock + in_stock_delta
    new_total = tool.total_stock + total_stock_delta
    if new_total < 0 or new_in_stock < 0 or new_in_stock > new_total:
        raise InvalidInput(
            f"Stock change would leave tool {tool.id} at in_stock={new_in_stock}, total_stock={new_total}."
        )

    tool.in_stock = new_in_stock
    tool.total_stock = new_total
    await _sync_display_status(tool, kind, conn)
    await tool.save(update_fields=["in_stock", "total_stock", "status", "updated_at"], using_db=conn)

    movement = await StockMovement.create(
        tool=tool,
        kind=kind,
        in_stock_delta=in_stock_delta,
        total_stock_delta=total_stock_delta,
        in_stock_after=new_in_stock,
        total_stock_after=new_total,
        order_id=order_id,
        note=note,
        using_db=conn
    )
    if in_stock_delta < 0:
        await check_for_low_stock(tool, order_id, conn)
    return movement


async def create_tool(
    name: str,
    category: str,
    price: Decimal,
    total_stock: int,
    in_stock: Optional[int] = None,
    brand: str = "",
    subcategory: str = "",
    description: str = "",
    status: ToolStatus = ToolStatus.AVAILABLE,
) -> Tool:
    price = to_decimal(price)
    if price <= 0:
        raise InvalidInput("Daily price must be positive.")
    if total_stock < 0:
        raise InvalidInput("totalStock cannot be negative.")
    if in_stock is None:
        in_stock = total_stock
    if in_stock < 0 or in_stock > total_stock:
        raise InvalidInput("inStock must be between 0 and totalStock.")

    async with in_transaction() as conn:
        tool = await Tool.create(
            name=name,
            brand=brand,
            category=category,
            subcategory=subcategory,
            description=description,
            price=price,
            total_stock=0,
            in_stock=0,
            status=status,
            using_db=conn
        )
        await apply_stock_delta(
            tool, MovementKind.INITIAL, in_stock_delta=in_stock, total_stock_delta=total_stock,
            note="Initial stock", conn=conn,
        )
        if status != tool.status and status != ToolStatus.AVAILABLE:
            tool.status = status
            await tool.save(update_fields=["status", "updated_at"], using_db=conn)

    log.info(f"Tool {tool.id} ({name}) registered with {total_stock} units.")
    return tool


async def get_tool(tool_id: UUID) -> Tool:
    return await get_tool_or_404(tool_id)


# Public sort keys -> model fields
TOOL_SORT_FIELDS = {
    "name": "name",
    "price": "price",
    "popularity": "total_rentals",
    "createdAt": "created_at",
}


def _tool_queryset(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    search: Optional[str] = None,
    available: Optional[bool] = None,
    include_inactive: bool = False,
    brand: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    sort: str = "name",
    order: str = "asc",
):
    if sort not in TOOL_SORT_FIELDS:
        raise InvalidInput(f"Cannot sort tools by '{sort}'; use one of {', '.join(TOOL_SORT_FIELDS)}.")
    if order not in ("asc", "desc"):
        raise InvalidInput(f"order must be 'asc' or 'desc', got '{order}'.")
    if min_price is not None and max_price is not None and to_decimal(min_price) > to_decimal(max_price):
        raise InvalidInput("minPrice cannot exceed maxPrice.")

    queryset = Tool.all()
    if not include_inactive:
        queryset = queryset.filter(is_active=True)
    if category:
        queryset = queryset.filter(category=category)
    if subcategory:
        queryset = queryset.filter(subcategory=subcategory)
    if brand:
        queryset = queryset.filter(brand=brand)
    if min_price is not None:
        queryset = queryset.filter(price__gte=to_decimal(min_price))
    if max_price is not None:
        queryset = queryset.filter(price__lte=to_decimal(max_price))
    if search:
        queryset = queryset.filter(
            Q(name__icontains=search) | Q(brand__icontains=search) | Q(description__icontains=search)
        )
    if available is True:
        queryset = queryset.filter(in_stock__gt=0).exclude(status__in=[ToolStatus.RETIRED, ToolStatus.MAINTENANCE])
    elif available is False:
        queryset = queryset.filter(Q(in_stock=0) | Q(status__in=[ToolStatus.RETIRED, ToolStatus.MAINTENANCE]))

    field = TOOL_SORT_FIELDS[sort]
    ordering = [f"-{field}" if order == "desc" else field]
    if field != "name":
        # Stable pages when many tools share a price or rental count
        ordering.append("name")
    return queryset.order_by(*ordering)


async def list_tools(**filters) -> List[Tool]:
    """Catalog listing; takes the filters and sort of _tool_queryset."""
    return await _tool_queryset(**filters)


async def list_tools_page(page: int = 1, limit: int = DEFAULT_PAGE_SIZE, **filters) -> Page:
    return await paginate(_tool_queryset(**filters), page, limit)


async def popular_tools(limit: int = 10) -> List[Tool]:
    """Most rented active tools first."""
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}, got {limit}")
    return await Tool.filter(is_active=True).exclude(status=ToolStatus.RETIRED).order_by(
        "-total_rentals", "-total_revenue", "name"
    ).limit(limit)


async def list_categories() -> List[Dict[str, Any]]:
    rows = await Tool.filter(is_active=True).order_by("category", "subcategory").values("category", "subcategory")
    grouped: Dict[str, List[str]] = {}
    for row in rows:
        subs = grouped.setdefault(row["category"], [])
        if row["subcategory"] and row["subcategory"] not in subs:
            subs.append(row["subcategory"])
    return [{"name": name, "subcategories": subs} for name, subs in grouped.items()]


async def low_stock_tools(threshold: int = LOW_STOCK_THRESHOLD) -> List[Tool]:
    return await Tool.filter(is_active=True, in_stock__lte=threshold).exclude(
        status=ToolStatus.RETIRED
    ).order_by("in_stock", "name")


async def update_tool(
    tool_id: UUID,
    in_stock: Optional[int] = None,
    total_stock: Optional[int] = None,
    status: Optional[ToolStatus] = None,
    price: Optional[Decimal] = None,
    name: Optional[str] = None,
    brand: Optional[str] = None,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Tool:
    """
    Administrative correction of a tool record.

    totalStock may not drop below the peak number of units committed at any
    instant from today on, nor below the units currently out with customers.
    Without an explicit inStock, a totalStock change moves inStock by the same
    amount (units added to or removed from the shelf). All checks run before
    any write; a rejected correction changes nothing.
    """
    if price is not None:
        price = to_decimal(price)
        if price <= 0:
            raise InvalidInput("Daily price must be positive.")

    async with tool_locks.hold([tool_id]):
        async with in_transaction() as conn:
            tool = await get_tool_or_404(tool_id, conn, for_update=True)
            current_day = today(now)
            out = await units_out(tool.id, conn)

            new_total = tool.total_stock if total_stock is None else total_stock
            if new_total < 0:
                raise InvalidInput("totalStock cannot be negative.")
            if new_total < tool.total_stock:
                peak = await peak_commitment(tool.id, current_day, now=now, conn=conn)
                if new_total < peak:
                    raise InvalidInput(
                        f"totalStock {new_total} is below the {peak} units already committed for upcoming rentals."
                    )
                if new_total < out:
                    raise InvalidInput(f"totalStock {new_total} is below the {out} units currently rented out.")

            if in_stock is None:
                new_in_stock = tool.in_stock + (new_total - tool.total_stock)
            else:
                new_in_stock = in_stock
            if new_in_stock < 0 or new_in_stock > new_total - out:
                raise InvalidInput(
                    f"inStock must be between 0 and {new_total - out} ({out} units are rented out)."
                )

            retiring = status == ToolStatus.RETIRED or is_active is False
            if retiring and tool.is_active:
                pending_work = await outstanding_commitments(tool.id, current_day, now=now, conn=conn)
                if pending_work or out:
                    raise InvalidInput(
                        f"Tool {tool.id} still has {pending_work} outstanding bookings and {out} units out."
                    )

            # Validation done, apply
            if new_in_stock != tool.in_stock or new_total != tool.total_stock:
                await apply_stock_delta(
                    tool,
                    MovementKind.CORRECTION,
                    in_stock_delta=new_in_stock - tool.in_stock,
                    total_stock_delta=new_total - tool.total_stock,
                    note="Administrative stock correction",
                    conn=conn,
                )

            for field, value in (
                ("status", status), ("price", price), ("name", name), ("brand", brand),
                ("category", category), ("subcategory", subcategory),
                ("description", description), ("is_active", is_active),
            ):
                if value is not None:
                    setattr(tool, field, value)
            if status == ToolStatus.RETIRED:
                tool.is_active = False
            await tool.save(using_db=conn)

    log.info(f"Tool {tool.id} updated: in_stock={tool.in_stock}, total_stock={tool.total_stock}, status={tool.status}")
    return tool


async def retire_tool(tool_id: UUID, now: Optional[datetime] = None) -> Tool:
    """Soft delete: a retired tool keeps its history but can no longer be booked."""
    return await update_tool(tool_id, status=ToolStatus.RETIRED, is_active=False, now=now)


async def stock_history(tool_id: UUID) -> List[StockMovement]:
    await get_tool_or_404(tool_id)
    return await StockMovement.filter(tool_id=tool_id).order_by("created_at")
