import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from app.models.ledger import MovementKind
from app.models.tool import ToolStatus
from app.schemas.base import CamelModel


class ToolCreateRequest(CamelModel):
    name: str = Field(..., description="Display name of the tool.")
    category: str
    subcategory: str = ""
    brand: str = ""
    description: str = ""
    price: Decimal = Field(..., description="Daily base price.")
    total_stock: int = Field(..., description="Physical units owned.")
    in_stock: Optional[int] = Field(None, description="Units on the shelf; defaults to totalStock.")
    status: ToolStatus = ToolStatus.AVAILABLE


class ToolUpdateRequest(CamelModel):
    """Administrative correction; only the fields sent are changed."""
    in_stock: Optional[int] = None
    total_stock: Optional[int] = None
    status: Optional[ToolStatus] = None
    price: Optional[Decimal] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class ToolResponse(CamelModel):
    id: uuid.UUID
    name: str
    brand: str
    category: str
    subcategory: str
    description: str
    price: Decimal
    total_stock: int
    in_stock: int
    status: ToolStatus
    is_active: bool
    total_rentals: int
    total_revenue: Decimal
    created_at: datetime
    updated_at: datetime


class CategoryResponse(CamelModel):
    name: str
    subcategories: List[str]


class AvailabilityResponse(CamelModel):
    tool_id: uuid.UUID
    start_date: date
    end_date: date
    quantity: int
    total_stock: int
    committed_quantity: int
    free_quantity: int
    is_available: bool
    can_book: bool


class RentalPeriodResponse(CamelModel):
    days: int
    price: Decimal
    discount: int


class PricingQuoteResponse(CamelModel):
    base_price: Decimal
    days: int
    quantity: int
    discount: Decimal
    price_per_day: Decimal
    total: Decimal
    savings: Decimal
    rental_periods: List[RentalPeriodResponse]


class StockMovementResponse(CamelModel):
    id: uuid.UUID
    kind: MovementKind
    in_stock_delta: int
    total_stock_delta: int
    in_stock_after: int
    total_stock_after: int
    order_id: Optional[uuid.UUID] = None
    note: str
    created_at: datetime
