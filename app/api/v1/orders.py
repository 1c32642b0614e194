import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.core.errors import BookingEngineError
from app.schemas.base import PaginationResponse
from app.schemas.order import (
    FulfillmentUpdate,
    OrderCancelRequest,
    OrderRequest,
    OrderResponse,
    OrderStatisticsResponse,
    OrderStatusEventResponse,
    OrderStatusUpdate,
)
from app.schemas.response import SuccessResponse
from app.services.order_service import (
    OrderItemSpec,
    cancel_order,
    create_order,
    get_order_by_id,
    list_orders_page,
    order_history,
    order_statistics,
    update_fulfillment,
    update_order_status,
)
from app.services.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter()
log = logging.getLogger(__name__)


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderRequest):
    """
    Creates a pending order. Items reference confirmed bookings, or name a tool
    to be booked together with the order.
    """
    try:
        order = await create_order(
            items=[OrderItemSpec(**item.model_dump()) for item in request_data.items],
            start_date=request_data.start_date,
            end_date=request_data.end_date,
            customer_info=request_data.customer_info.model_dump(by_alias=True, exclude_none=True) if request_data.customer_info else None,
            delivery_info=request_data.delivery_info.model_dump(by_alias=True, exclude_none=True) if request_data.delivery_info else None,
            payment_method=request_data.payment_method,
            notes=request_data.notes,
            customer_id=request_data.customer_id,
        )
        order = await get_order_by_id(order.id)
        return SuccessResponse(data=OrderResponse.from_order(order).to_wire())
    except BookingEngineError as e:
        log.warning(f"Order rejected: {e.code}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error placing order: {e}")
        raise HTTPException(status_code=500, detail="Server failed to place order.")


@router.get("/", response_model=SuccessResponse)
async def list_orders_endpoint(
    status: Optional[str] = None,
    customer_id: Optional[str] = Query(None, alias="customerId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
):
    """Lists orders, newest first. status=overdue selects active orders past their end date."""
    result = await list_orders_page(
        page=page,
        limit=limit,
        status=status,
        customer_id=customer_id,
        start_date=start_date,
        end_date=end_date,
    )
    return SuccessResponse(data={
        "orders": [OrderResponse.from_order(o).to_wire() for o in result.items],
        "pagination": PaginationResponse.from_page(result).to_wire(),
    })


@router.get("/meta/statistics", response_model=SuccessResponse)
async def order_statistics_endpoint(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
):
    stats = await order_statistics(start_date, end_date)
    return SuccessResponse(data=OrderStatisticsResponse(**stats).to_wire())


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID):
    """Fetches details for a specific order."""
    order = await get_order_by_id(order_id)
    return SuccessResponse(data=OrderResponse.from_order(order).to_wire())


@router.get("/{order_id}/history", response_model=SuccessResponse)
async def order_history_endpoint(order_id: UUID):
    """Audit trail of the order's status changes, oldest first."""
    events = await order_history(order_id)
    return SuccessResponse(data=[OrderStatusEventResponse.model_validate(e).to_wire() for e in events])


@router.put("/{order_id}/status", response_model=SuccessResponse)
async def update_status_endpoint(order_id: UUID, payload: OrderStatusUpdate):
    """
    Applies one step of the lifecycle (confirmed, active, completed, cancelled).
    Skipping a step fails with invalid_transition.
    """
    try:
        await update_order_status(order_id, payload.status, payload.note)
        order = await get_order_by_id(order_id)
        return SuccessResponse(data=OrderResponse.from_order(order).to_wire())
    except BookingEngineError as e:
        log.warning(f"Status update of order {order_id} to {payload.status} rejected: {e.code}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error updating order status: {e}")
        raise HTTPException(status_code=500, detail="Server failed to update order status.")


@router.put("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(order_id: UUID, payload: Optional[OrderCancelRequest] = None):
    """Cancels the order and releases its bookings; an active order's units go back on the shelf."""
    try:
        await cancel_order(order_id, payload.reason if payload else None)
        order = await get_order_by_id(order_id)
        return SuccessResponse(data=OrderResponse.from_order(order).to_wire())
    except BookingEngineError as e:
        log.warning(f"Cancellation of order {order_id} rejected: {e.code}: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error cancelling order: {e}")
        raise HTTPException(status_code=500, detail="Server failed to cancel order.")


@router.put("/{order_id}/fulfillment", response_model=SuccessResponse)
async def update_fulfillment_endpoint(order_id: UUID, payload: FulfillmentUpdate):
    """Payment and delivery progress reported by the external processes."""
    await update_fulfillment(order_id, payload.payment_status, payload.delivery_status)
    order = await get_order_by_id(order_id)
    return SuccessResponse(data=OrderResponse.from_order(order).to_wire())
