"""
Tenant scoping helpers.

Every entity the core touches is looked up through these helpers so a
company can never read or mutate another company's rows. A row that exists
but belongs to a different company is reported exactly like a missing row.

USAGE:
    company = require_company(command.company_id)
    customer = get_scoped(Customer, company.id, customer_id, "Customer")
    products = load_products(company.id, [item.product_id for item in items])
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import Company, Product
from ..errors import NotFoundError, ValidationError
from .concurrency import lock_for_update


def require_company(company_id: int, *, lock: bool = False) -> Company:
    """Load an active company or fail; inactive tenants reject every core operation."""
    query = db.session.query(Company).filter(Company.id == company_id)
    if lock:
        query = lock_for_update(query)
    company = query.first()
    if company is None:
        raise NotFoundError("Company not found", details={"company_id": company_id})
    if not company.is_active:
        raise ValidationError("Company is inactive", details={"company_id": company_id})
    return company


def get_scoped(
    model,
    company_id: int,
    entity_id: int,
    label: str,
    *,
    lock: bool = False,
    require_active: bool = False,
):
    """
    Fetch model row entity_id within company_id.

    Raises NotFoundError when the row is missing or owned by another company,
    ValidationError when require_active is set and the row is inactive.
    """
    query = db.session.query(model).filter(model.id == entity_id, model.company_id == company_id)
    if lock:
        query = lock_for_update(query)
    obj = query.first()
    if obj is None:
        key = f"{label.lower().replace(' ', '_')}_id"
        raise NotFoundError(f"{label} not found", details={key: entity_id})
    if require_active and not obj.is_active:
        key = f"{label.lower().replace(' ', '_')}_id"
        raise ValidationError(f"{label} is inactive", details={key: entity_id})
    return obj


def load_products(company_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Load every referenced product in one query and check it is sellable.

    A product is usable when it belongs to the company, is active, and its
    unit and category (when set) are active.
    """
    wanted = list(dict.fromkeys(product_ids))
    products = (
        db.session.query(Product)
        .filter(Product.company_id == company_id, Product.id.in_(wanted))
        .all()
    )
    by_id = {p.id: p for p in products}

    missing = [pid for pid in wanted if pid not in by_id]
    if missing:
        raise NotFoundError("Product not found", details={"product_ids": missing})

    for pid in wanted:
        product = by_id[pid]
        if not product.is_active:
            raise ValidationError(
                f"Product '{product.name}' is inactive",
                details={"product_id": pid},
            )
        if product.unit is not None and not product.unit.is_active:
            raise ValidationError(
                f"Unit '{product.unit.symbol}' of product '{product.name}' is inactive",
                details={"product_id": pid, "unit_id": product.unit_id},
            )
        if product.category is not None and not product.category.is_active:
            raise ValidationError(
                f"Category '{product.category.name}' of product '{product.name}' is inactive",
                details={"product_id": pid, "category_id": product.category_id},
            )
    return by_id
