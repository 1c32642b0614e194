"""
Duration-tiered rental pricing.

A rental of `days` days pays the daily base price times days, less the discount
of the longest tier whose threshold does not exceed `days`. A rental never gets
a discount it has not reached the threshold for.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, List, Tuple, Union

from app.core.config import PRICE_QUANTUM
from app.core.errors import InvalidInput

Number = Union[Decimal, int, float, str]

# (minimum days, discount fraction), ascending by days
DURATION_TIERS: Tuple[Tuple[int, Decimal], ...] = (
    (1, Decimal("0")),
    (3, Decimal("0.11")),
    (7, Decimal("0.17")),
    (14, Decimal("0.25")),
    (30, Decimal("0.33")),
)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() keeps floats like 0.1 from dragging in binary noise
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"Not a valid amount: {value!r}")


def round_money(amount: Decimal) -> Decimal:
    """Rounds half-up to the smallest currency unit."""
    return amount.quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)


def _validate(base_price: Number, days: int) -> Decimal:
    if isinstance(days, bool) or not isinstance(days, int):
        raise InvalidInput(f"Rental days must be an integer, got {days!r}")
    if days <= 0:
        raise InvalidInput(f"Rental days must be positive, got {days}")
    base = to_decimal(base_price)
    if base < 0:
        raise InvalidInput(f"Base price cannot be negative, got {base}")
    return base


def discount_for(days: int) -> Decimal:
    """Discount fraction of the nearest tier at or below `days`."""
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise InvalidInput(f"Rental days must be a positive integer, got {days!r}")
    discount = Decimal("0")
    for threshold, tier_discount in DURATION_TIERS:
        if days < threshold:
            break
        discount = tier_discount
    return discount


def price(base_price: Number, days: int) -> Decimal:
    """Total for one unit over `days` days."""
    base = _validate(base_price, days)
    return round_money(base * days * (Decimal("1") - discount_for(days)))


def savings(base_price: Number, days: int, quantity: int = 1) -> Decimal:
    """Undiscounted cost minus discounted cost for `quantity` units; never negative."""
    base = _validate(base_price, days)
    if quantity <= 0:
        raise InvalidInput(f"Quantity must be positive, got {quantity}")
    saved = base * days * quantity - price(base, days) * quantity
    return max(round_money(saved), round_money(Decimal("0")))


def line_total(base_price: Number, days: int, quantity: int) -> Decimal:
    if quantity <= 0:
        raise InvalidInput(f"Quantity must be positive, got {quantity}")
    return price(base_price, days) * quantity


def rental_periods(base_price: Number) -> List[Dict]:
    """One row per tier, as shown next to a tool: days, one-unit total and percent off."""
    base = _validate(base_price, 1)
    return [
        {
            "days": threshold,
            "price": price(base, threshold),
            "discount": int(discount * 100),
        }
        for threshold, discount in DURATION_TIERS
    ]


def quote(base_price: Number, days: int, quantity: int = 1) -> Dict:
    base = _validate(base_price, days)
    total = line_total(base, days, quantity)
    return {
        "base_price": round_money(base),
        "days": days,
        "quantity": quantity,
        "discount": discount_for(days),
        "price_per_day": round_money(total / (days * quantity)),
        "total": total,
        "savings": savings(base, days, quantity),
    }
