"""
Decimal helpers for monetary amounts.

All amounts leave the core with a 2-digit scale, rounded half up.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from numbers import Number
from typing import Union

Numeric = Union[int, float, str, Decimal]

MONEY_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def is_number(value) -> bool:
    """True for int, float and Decimal values, excluding bools and NaN/infinity"""
    if isinstance(value, bool) or not isinstance(value, Number):
        return False
    try:
        return to_decimal(value).is_finite()
    except (InvalidOperation, TypeError, ValueError):
        return False


def to_decimal(value: Numeric) -> Decimal:
    """Convert a numeric value to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value: Numeric, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round value to cents, half up unless another rounding mode is given."""
    return to_decimal(value).quantize(MONEY_PLACES, rounding=rounding)


def is_negligible(value: Decimal, tolerance: Decimal) -> bool:
    return abs(value) <= tolerance
