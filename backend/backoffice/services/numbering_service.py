# Overview: Human-readable document numbers (SALE-/PUR-/CUST-) per company.

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Company, Customer, Purchase, Sale
from ..errors import ConflictError
from .concurrency import lock_for_update

SEQUENCE_PAD = 4

SALE_PREFIX = "SALE"
PURCHASE_PREFIX = "PUR"
CUSTOMER_PREFIX = "CUST"


def _next_in_series(column, company_column, company_id: int, prefix: str) -> str:
    """
    Highest existing numeric "<prefix>NNNN" for the company, plus one.

    Values whose suffix is not all digits (hand-entered codes such as
    CUST-VIP) are outside the series and skipped. Comparing as integers keeps
    SALE-...-10000 above SALE-...-9999 once a series outgrows its padding.
    """
    rows = (
        db.session.query(column)
        .filter(company_column == company_id, column.like(f"{prefix}%"))
        .all()
    )
    highest = 0
    for (value,) in rows:
        suffix = value[len(prefix):]
        if suffix.isascii() and suffix.isdigit():
            highest = max(highest, int(suffix))
    next_num = highest + 1
    return f"{prefix}{next_num:0{SEQUENCE_PAD}d}"


def next_sale_number(company_id: int, on_date: date) -> str:
    prefix = f"{SALE_PREFIX}-{on_date:%Y%m%d}-"
    return _next_in_series(Sale.sale_number, Sale.company_id, company_id, prefix)


def next_purchase_number(company_id: int, on_date: date) -> str:
    prefix = f"{PURCHASE_PREFIX}-{on_date:%Y%m%d}-"
    return _next_in_series(Purchase.purchase_number, Purchase.company_id, company_id, prefix)


def next_customer_code(company_id: int) -> str:
    """Not date-scoped: one monotonic series per company."""
    return _next_in_series(Customer.customer_code, Customer.company_id, company_id, f"{CUSTOMER_PREFIX}-")


def insert_numbered(entity, attribute: str, generate, constraint: str):
    """
    Assign a freshly generated number to entity and flush it.

    The company row is locked for the read-increment-write so concurrent
    creations in the same company serialize on databases that honor
    FOR UPDATE. Elsewhere the unique constraint is the backstop: a collision
    surfaces as ConflictError and the enclosing unit of work is retried with
    a regenerated number.
    """
    lock_for_update(db.session.query(Company.id).filter(Company.id == entity.company_id)).one()

    number = generate()
    setattr(entity, attribute, number)
    db.session.add(entity)
    try:
        db.session.flush()
    except IntegrityError as exc:
        message = str(exc.orig) if exc.orig is not None else str(exc)
        if constraint in message or attribute in message:
            raise ConflictError(
                f"{attribute} {number} was taken concurrently",
                details={attribute: number},
            ) from exc
        raise
    return entity
