"""
Module: epp_kernel.db.types
Responsibility: Precision constants and the sanctioned rounding helpers
    for money and rates.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    and services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  All monetary amounts are Decimal with 2 places.
    - round_money() and floor_money() are the ONLY sanctioned rounding
      functions for money.  Schedule generation uses both: interest is
      rounded half-up, installment amounts are floored.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 6
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0.00")


def _quantum(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).
    """
    return value.quantize(_quantum(decimal_places), rounding=rounding)


def floor_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Truncate toward negative infinity to the given number of places."""
    return round_money(value, decimal_places, rounding=ROUND_FLOOR)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce a caller-supplied amount to Decimal.

    Floats are rejected: binary floating point cannot represent cents.

    Raises:
        TypeError: If value is a float.
    """
    if isinstance(value, float):
        raise TypeError("Monetary amounts must be Decimal, int or str, not float")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def validate_currency(currency: str) -> str:
    """
    Normalize a 3-letter currency label.

    Raises:
        ValueError: If currency is not three alphabetic characters.
    """
    if not currency or not isinstance(currency, str):
        raise ValueError(f"Invalid currency code: {currency!r}")
    normalized = currency.upper().strip()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError(f"Invalid currency code: {currency!r}")
    return normalized
