"""
Purchase Service - inbound stock documents and their cancellation

INVARIANTS:
- A purchase credits every tracked product by the purchased quantity, in the
  same unit of work as the purchase row and its items.
- Cancellation is one-way (completed -> cancelled) and all-or-nothing: if
  reversing ANY item would take its product below zero (because the stock
  has since been sold), nothing is reversed and the purchase stays completed.
  The ledger's clamp-at-zero is never used here.
- Product last-purchase fields are recomputed from the remaining completed
  purchases after every create/cancel.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem, Supplier
from ..models.purchases import PURCHASE_STATUS_CANCELLED, PURCHASE_STATUS_COMPLETED
from ..errors import StateError, ValidationError
from backoffice.money_utils import ZERO, money, quantity, to_decimal, unit_price
from backoffice.time_utils import Clock, resolve_business_datetime, utcnow
from .commands import CancelPurchaseCommand, PurchaseCommand
from .concurrency import run_atomic
from .ledger_service import MovementType, StockReference, adjust_stock
from .numbering_service import insert_numbered, next_purchase_number
from .pricing_service import compute_document_totals, compute_line
from .rollup_service import recompute_product_purchase_cost
from .tenant_service import get_scoped, load_products, require_company
from .unit_service import validate_quantity_for_unit


def create_purchase(command: PurchaseCommand, *, clock: Clock = utcnow) -> Purchase:
    """Record a purchase from a supplier and credit stock for every item."""
    command.validate()

    def _op() -> Purchase:
        company = require_company(command.company_id)
        supplier = get_scoped(Supplier, company.id, command.supplier_id, "Supplier", require_active=True)
        products = load_products(company.id, [item.product_id for item in command.items])
        for item in command.items:
            validate_quantity_for_unit(item.quantity, products[item.product_id].unit)

        created_on = clock().date()
        purchase = Purchase(
            company_id=company.id,
            supplier_id=supplier.id,
            user_id=command.actor_id,
            purchase_date=resolve_business_datetime(command.purchase_date, clock),
            status=PURCHASE_STATUS_COMPLETED,
            notes=command.notes,
        )
        insert_numbered(
            purchase,
            "purchase_number",
            lambda: next_purchase_number(company.id, created_on),
            "uq_purchases_company_number",
        )

        line_totals = []
        for item in command.items:
            product = products[item.product_id]
            qty = quantity(item.quantity)
            cost = unit_price(item.unit_cost)
            amounts = compute_line(qty, cost, item.discount_amount, item.discount_percentage, cost)
            db.session.add(PurchaseItem(
                purchase_id=purchase.id,
                product_id=product.id,
                unit_id=product.unit_id,
                product_name=product.name,
                product_sku=product.sku,
                quantity=qty,
                unit_cost=cost,
                discount_amount=money(item.discount_amount),
                discount_percentage=money(item.discount_percentage),
                cost_total=amounts.cost_total,
                line_total=amounts.line_total,
            ))
            line_totals.append(amounts.line_total)
            adjust_stock(
                product,
                qty,
                reference=StockReference.purchase(purchase.id),
                movement_type=MovementType.IN,
                actor_id=command.actor_id,
                notes=f"Purchase {purchase.purchase_number}",
            )

        totals = compute_document_totals(
            line_totals,
            command.discount_amount,
            command.discount_percentage,
            command.tax_amount,
        )
        purchase.subtotal = totals.subtotal
        purchase.discount_amount = totals.discount
        purchase.discount_percentage = money(command.discount_percentage)
        purchase.tax_amount = totals.tax_amount
        purchase.total_amount = totals.total_amount
        db.session.flush()

        for product in products.values():
            recompute_product_purchase_cost(product)
        return purchase

    purchase = run_atomic(_op, operation="create_purchase")
    current_app.logger.info(
        "Purchase %s created (id=%s, company=%s, total=%s)",
        purchase.purchase_number, purchase.id, purchase.company_id, purchase.total_amount,
    )
    return purchase


def _check_reversible(purchase: Purchase, items: list[PurchaseItem], products: dict[int, Product]) -> None:
    required: dict[int, Decimal] = {}
    for item in items:
        if products[item.product_id].track_stock:
            required[item.product_id] = required.get(item.product_id, ZERO) + to_decimal(item.quantity)

    insufficient = []
    for product_id, qty in required.items():
        product = products[product_id]
        available = to_decimal(product.stock_quantity)
        if available < qty:
            insufficient.append({
                "product_id": product.id,
                "product_name": product.name,
                "available": format(available, "f"),
                "required": format(qty, "f"),
            })

    if insufficient:
        names = ", ".join(row["product_name"] for row in insufficient)
        raise ValidationError(
            f"Cannot cancel purchase {purchase.purchase_number}: stock already consumed for {names}",
            details={"purchase_id": purchase.id, "items": insufficient},
        )


def cancel_purchase(command: CancelPurchaseCommand, *, clock: Clock = utcnow) -> Purchase:
    """
    Cancel a completed purchase and reverse its stock.

    Raises:
        StateError: purchase already cancelled
        ValidationError: some product no longer has the purchased quantity
    """
    command.validate()

    def _op() -> Purchase:
        require_company(command.company_id)
        purchase = get_scoped(Purchase, command.company_id, command.purchase_id, "Purchase", lock=True)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise StateError("Purchase already cancelled", details={"purchase_id": purchase.id})

        items = (
            db.session.query(PurchaseItem)
            .filter(PurchaseItem.purchase_id == purchase.id)
            .order_by(PurchaseItem.id.asc())
            .all()
        )
        products = {
            pid: get_scoped(Product, command.company_id, pid, "Product", lock=True)
            for pid in dict.fromkeys(item.product_id for item in items)
        }
        _check_reversible(purchase, items, products)

        for item in items:
            adjust_stock(
                products[item.product_id],
                -to_decimal(item.quantity),
                reference=StockReference.purchase_cancellation(purchase.id),
                movement_type=MovementType.ADJUSTMENT,
                actor_id=command.actor_id,
                notes=f"Cancellation of purchase {purchase.purchase_number}",
                allow_clamp=False,
            )

        purchase.status = PURCHASE_STATUS_CANCELLED
        purchase.cancelled_at = clock()
        purchase.cancelled_by_user_id = command.actor_id
        purchase.cancellation_reason = command.reason
        db.session.flush()

        for product in products.values():
            recompute_product_purchase_cost(product)
        return purchase

    purchase = run_atomic(_op, operation="cancel_purchase")
    current_app.logger.info(
        "Purchase %s cancelled by user %s",
        purchase.purchase_number, command.actor_id,
    )
    return purchase


def get_purchase(company_id: int, purchase_id: int) -> Purchase:
    return get_scoped(Purchase, company_id, purchase_id, "Purchase")
