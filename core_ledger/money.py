"""
Monetary Amount Module

Fixed-point amount helpers. All balances and transaction amounts are
Decimal values with exactly two fractional digits and at most 19 digits in
total. NEVER uses float for monetary values.
"""

from decimal import Decimal, InvalidOperation as DecimalException, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

AMOUNT_PRECISION = 2
AMOUNT_DIGITS = 19
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, str, int]

_CENT = Decimal('0.1') ** AMOUNT_PRECISION


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to a Decimal with exactly two fractional digits

    Values are never rounded: trailing zeros beyond the second fractional
    digit are dropped, anything finer than a cent is rejected.

    Args:
        value: Decimal, numeric string or int

    Returns:
        Decimal with exponent -2

    Raises:
        ValueError: If the value is a float, cannot be parsed, has more than
            two significant fractional digits or more than 19 digits overall
    """
    if isinstance(value, float):
        raise ValueError("Monetary amounts must not be floats")
    if isinstance(value, bool):
        raise ValueError("Monetary amounts must be numeric")

    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except DecimalException:
            raise ValueError(f"Invalid monetary amount: {value!r}")

    if not value.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if value and value.adjusted() >= AMOUNT_DIGITS - AMOUNT_PRECISION:
        raise ValueError(f"Monetary amount exceeds {AMOUNT_DIGITS} digits: {value}")

    try:
        amount = value.quantize(_CENT)
    except DecimalException:
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if amount != value:
        raise ValueError(f"Monetary amount has more than {AMOUNT_PRECISION} decimal places: {value}")
    return amount


def is_positive(amount: Decimal) -> bool:
    """Check if amount is strictly positive"""
    return amount > ZERO


def format_amount(amount: Decimal) -> str:
    """Format for display, e.g. 1,234.50"""
    return f"{amount:,.{AMOUNT_PRECISION}f}"
