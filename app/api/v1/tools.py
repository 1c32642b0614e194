import logging
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.core.errors import BookingEngineError
from app.schemas.base import PaginationResponse
from app.schemas.response import SuccessResponse
from app.schemas.tool import (
    AvailabilityResponse,
    CategoryResponse,
    PricingQuoteResponse,
    StockMovementResponse,
    ToolCreateRequest,
    ToolResponse,
    ToolUpdateRequest,
)
from app.services import pricing
from app.services.availability import check_availability
from app.services.inventory_service import (
    create_tool,
    get_tool,
    list_categories,
    list_tools_page,
    low_stock_tools,
    popular_tools,
    retire_tool,
    stock_history,
    update_tool,
)
from app.services.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()
log = logging.getLogger(__name__)


@router.get("/", response_model=SuccessResponse)
async def list_tools_endpoint(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    search: Optional[str] = None,
    available: Optional[bool] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice"),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice"),
    sort: str = "name",
    order: str = "asc",
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    include_inactive: bool = Query(False, alias="includeInactive"),
):
    """Catalog listing with optional filters, sorting and paging."""
    result = await list_tools_page(
        page=page,
        limit=limit,
        category=category,
        subcategory=subcategory,
        brand=brand,
        search=search,
        available=available,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        order=order,
        include_inactive=include_inactive,
    )
    return SuccessResponse(data={
        "tools": [ToolResponse.model_validate(t).to_wire() for t in result.items],
        "pagination": PaginationResponse.from_page(result).to_wire(),
    })


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_tool_endpoint(payload: ToolCreateRequest):
    """Registers a new tool and its initial stock."""
    try:
        tool = await create_tool(**payload.model_dump())
        return SuccessResponse(data=ToolResponse.model_validate(tool).to_wire())
    except BookingEngineError as e:
        log.warning(f"Rejected tool creation: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error creating tool: {e}")
        raise HTTPException(status_code=500, detail="Server failed to create tool.")


@router.get("/meta/categories", response_model=SuccessResponse)
async def list_categories_endpoint():
    categories = await list_categories()
    return SuccessResponse(data=[CategoryResponse(**c).to_wire() for c in categories])


@router.get("/meta/low-stock", response_model=SuccessResponse)
async def low_stock_endpoint():
    """Tools whose shelf count is at or below the low-stock threshold."""
    tools = await low_stock_tools()
    return SuccessResponse(data=[ToolResponse.model_validate(t).to_wire() for t in tools])


@router.get("/meta/popular", response_model=SuccessResponse)
async def popular_tools_endpoint(limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE)):
    """Most rented tools first."""
    tools = await popular_tools(limit)
    return SuccessResponse(data=[ToolResponse.model_validate(t).to_wire() for t in tools])


@router.get("/{tool_id}", response_model=SuccessResponse)
async def get_tool_endpoint(tool_id: UUID):
    tool = await get_tool(tool_id)
    return SuccessResponse(data=ToolResponse.model_validate(tool).to_wire())


@router.put("/{tool_id}", response_model=SuccessResponse)
async def update_tool_endpoint(tool_id: UUID, payload: ToolUpdateRequest):
    """
    Administrative stock correction. Rejected outright if it would leave fewer
    units than are committed to upcoming or running rentals.
    """
    try:
        tool = await update_tool(tool_id, **payload.model_dump(exclude_unset=True))
        return SuccessResponse(data=ToolResponse.model_validate(tool).to_wire())
    except BookingEngineError as e:
        log.warning(f"Rejected correction of tool {tool_id}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error updating tool {tool_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to update tool.")


@router.delete("/{tool_id}", response_model=SuccessResponse)
async def retire_tool_endpoint(tool_id: UUID):
    """Retires the tool. Its history is kept; it can no longer be booked."""
    tool = await retire_tool(tool_id)
    return SuccessResponse(data=ToolResponse.model_validate(tool).to_wire())


@router.get("/{tool_id}/availability", response_model=SuccessResponse)
async def availability_endpoint(
    tool_id: UUID,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    quantity: int = 1,
):
    """Free capacity of the tool for [startDate, endDate), recomputed on every call."""
    result = await check_availability(tool_id, start_date, end_date, quantity)
    return SuccessResponse(data=AvailabilityResponse.model_validate(result).to_wire())


@router.get("/{tool_id}/pricing", response_model=SuccessResponse)
async def pricing_endpoint(tool_id: UUID, days: int = 1, quantity: int = 1):
    """Price quote for a duration plus the per-tier rental periods table."""
    tool = await get_tool(tool_id)
    quote = pricing.quote(tool.price, days, quantity)
    data = PricingQuoteResponse(**quote, rental_periods=pricing.rental_periods(tool.price))
    return SuccessResponse(data=data.to_wire())


@router.get("/{tool_id}/stock-history", response_model=SuccessResponse)
async def stock_history_endpoint(tool_id: UUID):
    movements = await stock_history(tool_id)
    return SuccessResponse(data=[StockMovementResponse.model_validate(m).to_wire() for m in movements])
