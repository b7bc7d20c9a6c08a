"""
Module: trade_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for money,
    quantities, and exchange rates, so that every model and service uses
    identical column definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    and services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats: monetary amounts, weights, and rates are Decimal.
    - round_money() is the only sanctioned rounding function for money.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Kilograms with the same precision as money
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Exchange rates carry more fractional digits than amounts
Rate = Annotated[Decimal, Numeric(38, 18)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# SHA-256 hex digest
PayloadHash = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the stored precision.

    Args:
        value: Amount to round.
        decimal_places: Fractional digits to keep.
        rounding: Decimal rounding mode.

    Returns:
        ``value`` quantized to ``decimal_places``.
    """
    quantizer = Decimal(10) ** -decimal_places
    return Decimal(value).quantize(quantizer, rounding=rounding)


def to_decimal(value) -> Decimal:
    """Coerce an int, str, or Decimal into Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("Monetary values must not be floats")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def normalize_currency(code: str) -> str:
    """Upper-case and validate the shape of a currency code."""
    if not isinstance(code, str) or len(code.strip()) != 3 or not code.strip().isalpha():
        raise ValueError(f"Invalid currency code: {code!r}")
    return code.strip().upper()
