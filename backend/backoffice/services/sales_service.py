"""
Sales Service - atomic sale creation, header edits and refunds

WHY: A sale is one unit of work. The sale row, its items, every stock debit,
the initial payment and the customer rollup are committed together or not at
all, so a half-written sale is never observable.

Flow for create_sale:
1. Validate everything (tenant, customer, products, units, payment method,
   stock sufficiency aggregated per product) BEFORE any mutation.
2. Insert the sale with a fresh SALE-YYYYMMDD-NNNN number.
3. Per item: compute the line, persist the SaleItem snapshot, debit stock.
4. Header totals, initial payment, payment state, customer rollup.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem
from ..models.sales import (
    PAYMENT_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
    SALE_STATUS_REFUNDED,
)
from ..errors import StateError, ValidationError
from backoffice.money_utils import HUNDRED, ZERO, money, quantity, to_decimal, unit_price
from backoffice.time_utils import Clock, resolve_business_datetime, utcnow
from .commands import RefundCommand, SaleCommand, parse_amount
from .concurrency import run_atomic
from .ledger_service import MovementType, StockReference, adjust_stock
from .numbering_service import insert_numbered, next_sale_number
from .payment_service import record_payment, refresh_sale_payment_state, validate_payment_method
from .pricing_service import DocumentTotals, compute_document_totals, compute_line
from .rollup_service import recompute_customer_totals
from .tenant_service import get_scoped, load_products, require_company
from .unit_service import validate_quantity_for_unit

CREATE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_PENDING)
EDITABLE_STATUSES = (SALE_STATUS_COMPLETED, SALE_STATUS_PENDING, SALE_STATUS_CANCELLED)

UPDATABLE_FIELDS = {
    "customer_id",
    "discount_amount",
    "discount_percentage",
    "tax_amount",
    "payment_method",
    "notes",
    "status",
}


def _check_stock(products: dict[int, Product], items) -> None:
    """
    Aggregate requested quantity per tracked product and compare to stock.

    Two lines for the same product are checked against the product's stock
    together, not one at a time.
    """
    required: dict[int, Decimal] = {}
    for item in items:
        product = products[item.product_id]
        if not product.track_stock:
            continue
        required[product.id] = required.get(product.id, ZERO) + quantity(item.quantity)

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
        summary = "; ".join(
            f"{row['product_name']} (Available: {row['available']}, Required: {row['required']})"
            for row in insufficient
        )
        raise ValidationError(f"Insufficient stock: {summary}", details={"items": insufficient})


def _apply_totals(sale: Sale, totals: DocumentTotals) -> None:
    sale.subtotal = totals.subtotal
    sale.discount_amount = totals.discount
    sale.tax_amount = totals.tax_amount
    sale.total_amount = totals.total_amount
    sale.total_cost = totals.total_cost
    sale.profit_amount = totals.profit_amount
    sale.profit_margin = totals.profit_margin


def _recompute_totals(sale: Sale, flat_discount, discount_percentage, tax_amount) -> None:
    items = (
        db.session.query(SaleItem)
        .filter(SaleItem.sale_id == sale.id)
        .order_by(SaleItem.id.asc())
        .all()
    )
    totals = compute_document_totals(
        [item.line_total for item in items],
        flat_discount,
        discount_percentage,
        tax_amount,
        [item.cost_total for item in items],
    )
    sale.discount_percentage = money(discount_percentage)
    _apply_totals(sale, totals)


def _customer_or_none(company_id: int, customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    return get_scoped(Customer, company_id, customer_id, "Customer")


# =============================================================================
# CREATE
# =============================================================================

def create_sale(command: SaleCommand, *, clock: Clock = utcnow) -> Sale:
    """
    Create a sale with its items, stock debits and initial payment.

    Raises ValidationError (nothing written) for tenant, product, unit,
    payment-method or stock problems; ConflictError when concurrency retries
    run out.
    """
    command.validate()
    validate_payment_method(command.payment_method)
    if command.status not in CREATE_STATUSES:
        raise ValidationError(
            f"Invalid sale status: {command.status}",
            details={"status": command.status, "allowed": list(CREATE_STATUSES)},
        )

    def _op() -> Sale:
        company = require_company(command.company_id)
        customer = _customer_or_none(company.id, command.customer_id)
        products = load_products(company.id, [item.product_id for item in command.items])
        for item in command.items:
            validate_quantity_for_unit(item.quantity, products[item.product_id].unit)
        _check_stock(products, command.items)

        created_on = clock().date()
        sale = Sale(
            company_id=company.id,
            customer_id=customer.id if customer else None,
            user_id=command.actor_id,
            payment_method=command.payment_method,
            status=command.status,
            notes=command.notes,
            sale_date=resolve_business_datetime(command.sale_date, clock),
        )
        insert_numbered(
            sale,
            "sale_number",
            lambda: next_sale_number(company.id, created_on),
            "uq_sales_company_number",
        )

        for item in command.items:
            product = products[item.product_id]
            qty = quantity(item.quantity)
            price = unit_price(item.unit_price if item.unit_price is not None else product.selling_price)
            cost_price = unit_price(product.cost_price)
            amounts = compute_line(
                qty,
                price,
                item.discount_amount,
                item.discount_percentage,
                cost_price,
            )
            db.session.add(SaleItem(
                company_id=company.id,
                sale_id=sale.id,
                product_id=product.id,
                unit_id=product.unit_id,
                product_name=product.name,
                product_sku=product.sku,
                quantity=qty,
                unit_price=price,
                discount_amount=money(item.discount_amount),
                discount_percentage=money(item.discount_percentage),
                cost_price=cost_price,
                cost_total=amounts.cost_total,
                line_total=amounts.line_total,
                profit_amount=amounts.profit_amount,
            ))
            adjust_stock(
                product,
                -qty,
                reference=StockReference.sale(sale.id),
                movement_type=MovementType.OUT,
                actor_id=command.actor_id,
                notes=f"Sale {sale.sale_number}",
                allow_clamp=False,
            )

        db.session.flush()
        _recompute_totals(sale, command.discount_amount, command.discount_percentage, command.tax_amount)

        paid = money(command.amount_paid)
        if paid > 0:
            record_payment(
                sale,
                paid,
                command.payment_method,
                notes="Payment at sale",
                actor_id=command.actor_id,
                payment_date=sale.sale_date,
            )
        refresh_sale_payment_state(sale)
        recompute_customer_totals(customer)
        return sale

    sale = run_atomic(_op, operation="create_sale")
    current_app.logger.info(
        "Sale %s created (id=%s, company=%s, total=%s)",
        sale.sale_number, sale.id, sale.company_id, sale.total_amount,
    )
    return sale


# =============================================================================
# UPDATE (header only)
# =============================================================================

def update_sale(company_id: int, sale_id: int, *, actor_id: int | None = None, **changes) -> Sale:
    """
    Edit sale header fields and recompute totals and payment state.

    Items are immutable after creation. Status changes do not move stock.
    """
    unknown = sorted(set(changes) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(unknown)}", details={"fields": unknown})
    if "discount_amount" in changes:
        parse_amount("discount_amount", changes["discount_amount"])
    if "discount_percentage" in changes:
        parse_amount("discount_percentage", changes["discount_percentage"], maximum=HUNDRED)
    if "tax_amount" in changes:
        parse_amount("tax_amount", changes["tax_amount"])
    if "payment_method" in changes:
        validate_payment_method(changes["payment_method"])
    if "status" in changes and changes["status"] not in EDITABLE_STATUSES:
        raise ValidationError(
            f"Invalid sale status: {changes['status']}",
            details={"status": changes["status"], "allowed": list(EDITABLE_STATUSES)},
        )

    def _op() -> Sale:
        require_company(company_id)
        sale = get_scoped(Sale, company_id, sale_id, "Sale", lock=True)
        if sale.status == SALE_STATUS_REFUNDED:
            raise StateError("Refunded sales cannot be edited", details={"sale_id": sale.id})

        previous_customer_id = sale.customer_id
        if "customer_id" in changes:
            customer = _customer_or_none(company_id, changes["customer_id"])
            sale.customer_id = customer.id if customer else None

        # Stored discount is flat + percentage; peel the percentage part back off.
        old_percentage = to_decimal(sale.discount_percentage)
        flat_discount = money(sale.discount_amount) - money(to_decimal(sale.subtotal) * old_percentage / HUNDRED)
        if "discount_amount" in changes:
            flat_discount = money(changes["discount_amount"])
        percentage = changes.get("discount_percentage", old_percentage)
        tax_amount = changes.get("tax_amount", sale.tax_amount)

        for field in ("payment_method", "notes", "status"):
            if field in changes:
                setattr(sale, field, changes[field])

        _recompute_totals(sale, flat_discount, percentage, tax_amount)
        refresh_sale_payment_state(sale)

        for customer_id in {previous_customer_id, sale.customer_id}:
            if customer_id is not None:
                recompute_customer_totals(db.session.get(Customer, customer_id))
        return sale

    sale = run_atomic(_op, operation="update_sale")
    current_app.logger.info(
        "Sale %s updated by user %s (fields=%s)",
        sale.sale_number, actor_id, ",".join(sorted(changes)),
    )
    return sale


# =============================================================================
# REFUND
# =============================================================================

def refund_sale(command: RefundCommand, *, clock: Clock = utcnow) -> Sale:
    """
    Mark a completed or pending sale as refunded, optionally restocking.

    The financial totals stay as they were; the refund is recorded in
    status, payment_status and an audit note on the sale.
    """
    command.validate()

    def _op() -> Sale:
        require_company(command.company_id)
        sale = get_scoped(Sale, command.company_id, command.sale_id, "Sale", lock=True)
        if sale.status == SALE_STATUS_REFUNDED:
            raise StateError("Sale already refunded", details={"sale_id": sale.id})
        if sale.status == SALE_STATUS_CANCELLED:
            raise StateError("Cancelled sales cannot be refunded", details={"sale_id": sale.id})

        total = money(sale.total_amount)
        amount = total if command.amount is None else money(command.amount)
        if command.amount is not None and amount > total:
            raise ValidationError(
                "Refund amount exceeds sale total",
                details={"amount": format(amount, "f"), "total_amount": format(total, "f")},
            )

        note = f"REFUNDED: {command.reason.strip()} (Amount: {amount})"
        sale.notes = f"{sale.notes}\n{note}" if sale.notes else note
        sale.status = SALE_STATUS_REFUNDED
        sale.payment_status = PAYMENT_STATUS_REFUNDED
        sale.refunded_at = clock()

        if command.restock:
            for item in sale.items:
                product = db.session.get(Product, item.product_id)
                adjust_stock(
                    product,
                    item.quantity,
                    reference=StockReference.refund(sale.id),
                    movement_type=MovementType.IN,
                    actor_id=command.actor_id,
                    notes=f"Refund of sale {sale.sale_number}",
                )

        db.session.flush()
        if sale.customer_id is not None:
            recompute_customer_totals(db.session.get(Customer, sale.customer_id))
        return sale

    sale = run_atomic(_op, operation="refund_sale")
    current_app.logger.info(
        "Sale %s refunded (restock=%s, user=%s)",
        sale.sale_number, command.restock, command.actor_id,
    )
    return sale


def get_sale(company_id: int, sale_id: int) -> Sale:
    return get_scoped(Sale, company_id, sale_id, "Sale")
