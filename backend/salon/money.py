"""
Decimal helpers for monetary amounts.

All amounts are stored as Numeric(12, 2) and handled as Decimal quantized
to two places. Percentage discounts round to whole currency units
(half-up), matching how the till prints them.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, ROUND_FLOOR
from typing import Any

TWOPLACES = Decimal("0.01")
ONE = Decimal("1")
ZERO = Decimal("0.00")

# Payment totals may differ from the final amount by at most this much
PAYMENT_TOLERANCE = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Coerce int/float/str/Decimal/None to a 2dp Decimal (None/"" -> 0.00)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise ValueError("boolean is not a monetary amount")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid monetary amount: {value!r}")
    return amount.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def round_units(value: Decimal) -> Decimal:
    """Round to whole currency units, half-up."""
    return value.quantize(ONE, rounding=ROUND_HALF_UP).quantize(TWOPLACES)


def floor_div(value: Decimal, unit: int) -> int:
    """floor(value / unit) as int; unit must be positive."""
    if unit <= 0:
        raise ValueError("unit must be positive")
    return int((Decimal(value) / Decimal(unit)).to_integral_value(rounding=ROUND_FLOOR))


def money_json(value: Decimal | None) -> str | None:
    """Serialize for JSON as a fixed 2dp string."""
    if value is None:
        return None
    return str(to_money(value))
