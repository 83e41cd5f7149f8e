# Overview: Stock ledger; the only writer of Product.stock_quantity.

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement
from ..errors import ConflictError, ValidationError
from backoffice.money_utils import ZERO, quantity as quantize_quantity, to_decimal
from .concurrency import lock_for_update
from .tenant_service import get_scoped
"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity and the StockMovement insert change in the same
  unit of work; both succeed or both fail.
- A tracked product's stock never goes below zero. By default a debit that
  would go negative is clamped so the result is exactly zero, and the
  movement records the clamped delta. Callers that need strict sufficiency
  pass allow_clamp=False and get a ValidationError instead.
- Untracked products are never touched: adjust_stock is a no-op.
- A movement row is written only for a non-zero effective delta.
- Replaying all movements of a product in id order from zero reproduces
  Product.stock_quantity exactly.

Concurrency:
- The current quantity is read under a row lock (FOR UPDATE where the
  database honors it) and written back with a compare-and-swap on
  Product.version_id. A lost race re-reads and retries, up to
  STOCK_CAS_ATTEMPTS; then ConflictError.
"""


class StockReferenceType(str, enum.Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    PURCHASE_CANCELLATION = "purchase_cancellation"
    REFUND = "refund"
    INITIAL_STOCK = "initial_stock"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class StockReference:
    """What caused a stock change: a reference kind plus the document id, if any."""
    type: StockReferenceType
    id: int | None = None

    @classmethod
    def sale(cls, sale_id: int) -> "StockReference":
        return cls(StockReferenceType.SALE, sale_id)

    @classmethod
    def purchase(cls, purchase_id: int) -> "StockReference":
        return cls(StockReferenceType.PURCHASE, purchase_id)

    @classmethod
    def purchase_cancellation(cls, purchase_id: int) -> "StockReference":
        return cls(StockReferenceType.PURCHASE_CANCELLATION, purchase_id)

    @classmethod
    def refund(cls, sale_id: int) -> "StockReference":
        return cls(StockReferenceType.REFUND, sale_id)

    @classmethod
    def initial_stock(cls) -> "StockReference":
        return cls(StockReferenceType.INITIAL_STOCK)

    @classmethod
    def manual_adjustment(cls) -> "StockReference":
        return cls(StockReferenceType.MANUAL_ADJUSTMENT)


@dataclass(frozen=True)
class StockAdjustment:
    quantity: Decimal
    movement: StockMovement | None = None

    @property
    def movement_created(self) -> bool:
        return self.movement is not None


def _read_stock_row(product_id: int):
    """Current (stock_quantity, version_id) for a product, row-locked."""
    query = db.session.query(Product.stock_quantity, Product.version_id).filter(Product.id == product_id)
    return lock_for_update(query).one()


def adjust_stock(
    product: Product,
    quantity_delta,
    *,
    reference: StockReference,
    movement_type: MovementType | str | None = None,
    actor_id: int | None = None,
    notes: str | None = None,
    allow_clamp: bool = True,
) -> StockAdjustment:
    """
    Apply a signed stock delta to a product and append the matching movement.

    Runs inside the caller's unit of work and never commits.

    Returns StockAdjustment(quantity, movement). movement is None when the
    adjustment was skipped (untracked product) or the effective delta was zero.
    """
    if not isinstance(reference, StockReference):
        raise TypeError("reference must be a StockReference")

    if not product.track_stock:
        return StockAdjustment(quantity=to_decimal(product.stock_quantity))

    delta = quantize_quantity(quantity_delta)
    attempts = current_app.config.get("STOCK_CAS_ATTEMPTS", 5)

    for attempt in range(attempts):
        row = _read_stock_row(product.id)
        current = to_decimal(row.stock_quantity)

        effective = delta
        if current + delta < 0:
            if not allow_clamp:
                raise ValidationError(
                    f"Insufficient stock for {product.name}. Available: {current.normalize():f}, "
                    f"Required: {(-delta).normalize():f}",
                    details={"items": [{
                        "product_id": product.id,
                        "product_name": product.name,
                        "available": format(current, "f"),
                        "required": format(-delta, "f"),
                    }]},
                )
            effective = -current

        if effective == 0:
            return StockAdjustment(quantity=current)

        new_quantity = current + effective
        stmt = (
            update(Product)
            .where(Product.id == product.id, Product.version_id == row.version_id)
            .values(stock_quantity=new_quantity, version_id=row.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            current_app.logger.warning(
                "Stock write for product %s lost a race (attempt %d/%d)",
                product.id, attempt + 1, attempts,
            )
            continue

        db.session.expire(product, ["stock_quantity", "version_id"])

        if movement_type is None:
            movement_type = MovementType.IN if effective > 0 else MovementType.OUT

        movement = StockMovement(
            company_id=product.company_id,
            product_id=product.id,
            unit_id=product.unit_id,
            user_id=actor_id,
            type=MovementType(movement_type).value,
            quantity=effective,
            stock_before=current,
            stock_after=new_quantity,
            reference_type=reference.type.value,
            reference_id=reference.id,
            notes=notes,
        )
        db.session.add(movement)
        db.session.flush()
        return StockAdjustment(quantity=new_quantity, movement=movement)

    raise ConflictError(
        f"Stock for product {product.id} is being changed concurrently",
        details={"product_id": product.id, "attempts": attempts},
    )


# =============================================================================
# Reconciliation
# =============================================================================

def _movements_for(product_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def replay_movements(product_id: int) -> Decimal:
    """Stock obtained by applying every movement, oldest first, starting from zero."""
    total = ZERO
    for movement in _movements_for(product_id):
        total += to_decimal(movement.quantity)
    return quantize_quantity(total)


def verify_product_ledger(product: Product) -> list[str]:
    """
    Check a product's movement history against its current stock.

    Returns human-readable problems; an empty list means the ledger is sound.
    Untracked products are skipped.
    """
    if not product.track_stock:
        return []

    problems = []
    previous_after = ZERO
    total = ZERO
    for movement in _movements_for(product.id):
        before = to_decimal(movement.stock_before)
        after = to_decimal(movement.stock_after)
        qty = to_decimal(movement.quantity)
        if before != previous_after:
            problems.append(
                f"movement {movement.id}: stock_before {before:f} does not follow previous stock_after {previous_after:f}"
            )
        if after != before + qty:
            problems.append(
                f"movement {movement.id}: stock_after {after:f} != stock_before {before:f} + quantity {qty:f}"
            )
        if after < 0:
            problems.append(f"movement {movement.id}: negative stock_after {after:f}")
        previous_after = after
        total += qty

    stock = to_decimal(product.stock_quantity)
    if quantize_quantity(total) != quantize_quantity(stock):
        problems.append(f"replayed stock {total:f} != stock_quantity {stock:f}")
    return problems


def verify_company_ledger(company_id: int) -> dict[int, list[str]]:
    """Problems per product id, for every product of the company that has any."""
    report = {}
    products = (
        db.session.query(Product)
        .filter(Product.company_id == company_id)
        .order_by(Product.id.asc())
        .all()
    )
    for product in products:
        problems = verify_product_ledger(product)
        if problems:
            report[product.id] = problems
    return report


def list_movements(company_id: int, product_id: int, limit: int = 200) -> list[StockMovement]:
    get_scoped(Product, company_id, product_id, "Product")
    return (
        db.session.query(StockMovement)
        .filter(
            StockMovement.company_id == company_id,
            StockMovement.product_id == product_id,
        )
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
