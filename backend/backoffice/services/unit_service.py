# Overview: Unit-of-measure formatting and the default unit catalogue.

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Unit
from ..errors import ValidationError
from backoffice.money_utils import quantity as quantize_quantity, to_decimal


# =============================================================================
# FORMATTING
# =============================================================================

def format_quantity(quantity, unit: Unit | None) -> Decimal:
    """
    Convert a raw quantity to the unit's display precision.

    - no unit: normalized to 6 decimal places
    - unit without decimals: truncated toward zero (2.9 pcs -> 2)
    - otherwise: rounded half-up to unit.decimal_places
    """
    qty = to_decimal(quantity)
    if unit is None:
        return quantize_quantity(qty)
    if not unit.allow_decimals:
        return qty.to_integral_value(rounding=ROUND_DOWN)
    places = int(unit.decimal_places or 0)
    return qty.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def strip_zeros(value) -> str:
    """Plain string for a Decimal with trailing zeros removed ("2.500" -> "2.5")."""
    d = to_decimal(value)
    if d == 0:
        return "0"
    return format(d.normalize(), "f")


def display_quantity(quantity, unit: Unit | None) -> str:
    if quantity is None:
        return ""
    if unit is None:
        return strip_zeros(quantity)
    return f"{strip_zeros(format_quantity(quantity, unit))} {unit.symbol}"


def validate_quantity_for_unit(quantity, unit: Unit | None) -> Decimal:
    """Reject fractional quantities for units that only count whole items."""
    qty = to_decimal(quantity)
    if unit is not None and not unit.allow_decimals and qty != qty.to_integral_value():
        raise ValidationError(
            f"Unit '{unit.symbol}' does not allow fractional quantities",
            details={"unit_id": unit.id, "quantity": format(qty, "f")},
        )
    return qty


# =============================================================================
# DEFAULT CATALOGUE
# =============================================================================

DEFAULT_UNITS = [
    # Count units (no decimals)
    {"name": "Pieces", "symbol": "pcs", "type": "count", "allow_decimals": False, "decimal_places": 0},
    {"name": "Dozen", "symbol": "doz", "type": "count", "allow_decimals": False, "decimal_places": 0},
    {"name": "Box", "symbol": "box", "type": "count", "allow_decimals": False, "decimal_places": 0},
    {"name": "Pack", "symbol": "pack", "type": "count", "allow_decimals": False, "decimal_places": 0},
    # Weight
    {"name": "Kilogram", "symbol": "kg", "type": "weight", "allow_decimals": True, "decimal_places": 3},
    {"name": "Gram", "symbol": "g", "type": "weight", "allow_decimals": True, "decimal_places": 2},
    {"name": "Pound", "symbol": "lb", "type": "weight", "allow_decimals": True, "decimal_places": 3},
    {"name": "Ounce", "symbol": "oz", "type": "weight", "allow_decimals": True, "decimal_places": 2},
    # Volume
    {"name": "Liter", "symbol": "L", "type": "volume", "allow_decimals": True, "decimal_places": 3},
    {"name": "Milliliter", "symbol": "ml", "type": "volume", "allow_decimals": True, "decimal_places": 2},
    {"name": "Gallon", "symbol": "gal", "type": "volume", "allow_decimals": True, "decimal_places": 3},
    {"name": "Quart", "symbol": "qt", "type": "volume", "allow_decimals": True, "decimal_places": 3},
    # Length
    {"name": "Meter", "symbol": "m", "type": "length", "allow_decimals": True, "decimal_places": 3},
    {"name": "Centimeter", "symbol": "cm", "type": "length", "allow_decimals": True, "decimal_places": 2},
    {"name": "Foot", "symbol": "ft", "type": "length", "allow_decimals": True, "decimal_places": 2},
    {"name": "Inch", "symbol": "in", "type": "length", "allow_decimals": True, "decimal_places": 2},
    {"name": "Yard", "symbol": "yd", "type": "length", "allow_decimals": True, "decimal_places": 3},
    # Area
    {"name": "Square Meter", "symbol": "m²", "type": "area", "allow_decimals": True, "decimal_places": 3},
    {"name": "Square Foot", "symbol": "ft²", "type": "area", "allow_decimals": True, "decimal_places": 2},
    # Custom
    {"name": "Roll", "symbol": "roll", "type": "custom", "allow_decimals": False, "decimal_places": 0},
    {"name": "Sheet", "symbol": "sheet", "type": "custom", "allow_decimals": False, "decimal_places": 0},
    {"name": "Bottle", "symbol": "btl", "type": "custom", "allow_decimals": False, "decimal_places": 0},
    {"name": "Can", "symbol": "can", "type": "custom", "allow_decimals": False, "decimal_places": 0},
    {"name": "Tube", "symbol": "tube", "type": "custom", "allow_decimals": False, "decimal_places": 0},
    {"name": "Bag", "symbol": "bag", "type": "custom", "allow_decimals": False, "decimal_places": 0},
]


def seed_default_units(company_id: int) -> list[Unit]:
    """
    Create the default unit catalogue for a company.

    Safe to call repeatedly (idempotent by symbol). Returns only the units
    created by this call. Caller commits.
    """
    existing = {
        symbol
        for (symbol,) in db.session.query(Unit.symbol).filter(Unit.company_id == company_id).all()
    }
    created = []
    for attrs in DEFAULT_UNITS:
        if attrs["symbol"] in existing:
            continue
        unit = Unit(company_id=company_id, **attrs)
        db.session.add(unit)
        created.append(unit)
    db.session.flush()
    current_app.logger.info("Seeded %d default units for company %s", len(created), company_id)
    return created
