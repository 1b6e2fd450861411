"""
Money Utilities - Safe Decimal operations for prices.

Avoids float precision issues by using Decimal throughout; floats only
appear at the JSON boundary.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[str, int, float, Decimal, None]

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    if isinstance(value, bool):
        return Decimal("0")

    try:
        if isinstance(value, float):
            # Go through str so 0.1 stays 0.1
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_money(value: Number) -> Decimal:
    """Round a monetary value to cents."""
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def multiply(value: Number, factor: Number) -> Decimal:
    """Safe multiplication of monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def to_float(value: Number) -> float:
    """
    Convert Decimal to float for JSON serialization.

    Use only at the storage/wire boundary, not for internal calculations.
    """
    return float(to_decimal(value))
