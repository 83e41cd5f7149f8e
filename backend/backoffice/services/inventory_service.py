# Overview: Service-layer operations for inventory; tenant-scoped stock operations outside documents.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement
from ..errors import ValidationError
from backoffice.money_utils import quantity
from .concurrency import run_atomic
from .ledger_service import MovementType, StockAdjustment, StockReference, adjust_stock
from .tenant_service import get_scoped, require_company
from .unit_service import validate_quantity_for_unit

DEFAULT_ADJUSTMENT_NOTE = "Manual stock adjustment"


def _tracked_product(company_id: int, product_id: int) -> Product:
    require_company(company_id)
    product = get_scoped(Product, company_id, product_id, "Product")
    if not product.track_stock:
        raise ValidationError(
            f"Stock is not tracked for product '{product.name}'",
            details={"product_id": product.id},
        )
    return product


def record_initial_stock(
    company_id: int,
    product_id: int,
    initial_quantity,
    actor_id: int | None = None,
) -> StockMovement | None:
    """
    Book a new product's opening stock through the ledger.

    Returns the movement, or None for a zero opening quantity.
    """
    try:
        qty = quantity(initial_quantity)
    except ValueError:
        raise ValidationError("quantity must be numeric", details={"field": "quantity"})
    if qty < 0:
        raise ValidationError("Initial stock cannot be negative", details={"field": "quantity"})

    def _op() -> StockMovement | None:
        product = _tracked_product(company_id, product_id)
        validate_quantity_for_unit(qty, product.unit)
        result = adjust_stock(
            product,
            qty,
            reference=StockReference.initial_stock(),
            movement_type=MovementType.IN,
            actor_id=actor_id,
            notes="Initial stock",
        )
        return result.movement

    return run_atomic(_op, operation="record_initial_stock")


def adjust_product_stock(
    company_id: int,
    product_id: int,
    adjustment,
    notes: str | None = None,
    actor_id: int | None = None,
) -> StockAdjustment:
    """
    Manual correction (damage, found stock, stocktake difference).

    A debit larger than the stock on hand is clamped to zero by the ledger;
    the returned adjustment carries the movement actually recorded.
    """
    try:
        delta = quantity(adjustment)
    except ValueError:
        raise ValidationError("adjustment must be numeric", details={"field": "adjustment"})
    if delta == 0:
        raise ValidationError("Adjustment cannot be zero", details={"field": "adjustment"})

    def _op() -> StockAdjustment:
        product = _tracked_product(company_id, product_id)
        validate_quantity_for_unit(delta, product.unit)
        return adjust_stock(
            product,
            delta,
            reference=StockReference.manual_adjustment(),
            movement_type=MovementType.ADJUSTMENT,
            actor_id=actor_id,
            notes=notes or DEFAULT_ADJUSTMENT_NOTE,
        )

    result = run_atomic(_op, operation="adjust_product_stock")
    current_app.logger.info(
        "Manual stock adjustment on product %s (company %s): requested %s, now %s",
        product_id, company_id, delta, result.quantity,
    )
    return result


def low_stock_products(company_id: int) -> list[Product]:
    """Tracked, active products at or below their minimum stock."""
    require_company(company_id)
    return (
        db.session.query(Product)
        .filter(
            Product.company_id == company_id,
            Product.track_stock.is_(True),
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.minimum_stock,
        )
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
