"""
Points accrual for bookings.

A product rewards either a flat ``points_per_unit`` or a share of its price
(``floor(base_price * reward_percentage / 100)`` points per unit). Catalog
records arrive from outside the core, so every numeric field is coerced
defensively: anything missing, non-numeric, NaN or infinite counts as 0.
"""

from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Mapping, Union

from pydantic import BaseModel


ProductLike = Union[BaseModel, Mapping[str, Any]]


def _as_decimal(value: Any) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not number.is_finite():
        return Decimal("0")
    return number


def _field(product: ProductLike, name: str) -> Any:
    if isinstance(product, BaseModel):
        return getattr(product, name, None)
    return product.get(name)


def points_per_unit(product: ProductLike) -> int:
    """Points a single unit of ``product`` earns, never negative."""
    flat = _field(product, "points_per_unit")
    if flat is not None:
        per_unit = _as_decimal(flat)
    else:
        base_price = _as_decimal(_field(product, "base_price"))
        percentage = _as_decimal(_field(product, "reward_percentage"))
        per_unit = base_price * percentage / Decimal("100")

    per_unit = per_unit.to_integral_value(rounding=ROUND_FLOOR)
    return max(0, int(per_unit))


def compute_points(product: ProductLike, quantity: Any) -> int:
    units = _as_decimal(quantity).to_integral_value(rounding=ROUND_FLOOR)
    return max(0, points_per_unit(product) * int(units))
