# Overview: Denormalized aggregates (customer totals, product last-purchase cost).

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Product, Purchase, PurchaseItem, Sale
from ..models.catalog import COST_METHOD_LAST_PURCHASE
from ..models.purchases import PURCHASE_STATUS_COMPLETED
from ..models.sales import SALE_STATUS_COMPLETED
from backoffice.money_utils import ZERO, money
"""
Rollup Invariants (authoritative)

- Rollups are a cache of an aggregate query over source documents.
- They are ALWAYS recomputed from the full source set, never incremented.
  Recomputing twice in a row yields identical values, and any drift heals on
  the next recompute.
- Customer totals count only sales with status = completed.
- Product last-purchase fields follow the most recent completed purchase
  (purchase_date, then id). Cancelled purchases drop out automatically.
"""


def recompute_customer_totals(customer: Customer | None) -> Customer | None:
    """Rewrite total_orders, total_spent and last_order_at from completed sales."""
    if customer is None:
        return None

    orders, spent, last_order_at = (
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_amount), 0),
            func.max(Sale.sale_date),
        )
        .filter(
            Sale.company_id == customer.company_id,
            Sale.customer_id == customer.id,
            Sale.status == SALE_STATUS_COMPLETED,
        )
        .one()
    )

    customer.total_orders = int(orders or 0)
    customer.total_spent = money(spent or ZERO)
    customer.last_order_at = last_order_at
    db.session.flush()
    return customer


def recompute_product_purchase_cost(product: Product) -> Product:
    """
    Refresh last_purchase_cost / last_purchase_date from purchase history.

    When cost_method is last_purchase and a completed purchase exists,
    cost_price follows the latest unit cost. With no completed purchase left
    the purchase fields are cleared and cost_price is kept.
    """
    latest = (
        db.session.query(PurchaseItem.unit_cost, Purchase.purchase_date)
        .join(Purchase, Purchase.id == PurchaseItem.purchase_id)
        .filter(
            Purchase.company_id == product.company_id,
            Purchase.status == PURCHASE_STATUS_COMPLETED,
            PurchaseItem.product_id == product.id,
        )
        .order_by(Purchase.purchase_date.desc(), Purchase.id.desc(), PurchaseItem.id.desc())
        .first()
    )

    if latest is None:
        product.last_purchase_cost = None
        product.last_purchase_date = None
    else:
        unit_cost, purchase_date = latest
        product.last_purchase_cost = money(unit_cost)
        product.last_purchase_date = purchase_date
        if product.cost_method == COST_METHOD_LAST_PURCHASE:
            product.cost_price = money(unit_cost)

    db.session.flush()
    return product


def recompute_company_rollups(company_id: int) -> dict:
    """Recompute every customer rollup and product purchase rollup. Caller commits."""
    customers = db.session.query(Customer).filter(Customer.company_id == company_id).all()
    for customer in customers:
        recompute_customer_totals(customer)

    products = db.session.query(Product).filter(Product.company_id == company_id).all()
    for product in products:
        recompute_product_purchase_cost(product)

    current_app.logger.info(
        "Recomputed rollups for company %s: %d customers, %d products",
        company_id, len(customers), len(products),
    )
    return {"customers": len(customers), "products": len(products)}
