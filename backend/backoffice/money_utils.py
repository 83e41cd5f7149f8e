"""
Fixed-point helpers for quantities, unit prices and money.

All arithmetic in the core is done on Decimal. Precision follows the schema:
- quantities: 6 decimal places
- unit prices / unit costs: 4 decimal places
- money amounts (totals, discounts, tax, profit): 2 decimal places

Rounding is half-up (away from zero for .5), matching how the amounts
are presented on receipts.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

ZERO = Decimal("0")
HUNDRED = Decimal("100")

MONEY_EXP = Decimal("0.01")
PRICE_EXP = Decimal("0.0001")
QUANTITY_EXP = Decimal("0.000001")


def _finite(amount: Decimal) -> Decimal:
    if not amount.is_finite():
        raise ValueError(f"non-finite amount: {amount}")
    return amount


def to_decimal(value) -> Decimal:
    """
    Coerce int/str/float/Decimal/None into a finite Decimal. Floats go through str().

    NaN and Infinity raise ValueError like any other non-numeric input.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return _finite(value)
    if isinstance(value, bool):
        raise ValueError("boolean is not a numeric amount")
    if isinstance(value, float):
        value = str(value)
    try:
        return _finite(Decimal(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"invalid numeric amount: {value!r}") from exc


def money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_EXP, rounding=ROUND_HALF_UP)


def unit_price(value) -> Decimal:
    return to_decimal(value).quantize(PRICE_EXP, rounding=ROUND_HALF_UP)


def quantity(value) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_EXP, rounding=ROUND_HALF_UP)


def decimal_str(value) -> str | None:
    """Serialize a Decimal for JSON payloads without scientific notation."""
    if value is None:
        return None
    return format(to_decimal(value), "f")
