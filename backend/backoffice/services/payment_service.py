# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Recording Service

DESIGN PRINCIPLES:
- Payments are separate rows (many-to-one with Sale), append-only
- Split/partial payments: one sale can have many payments
- Sale.amount_paid is ALWAYS recomputed as SUM(PaymentRecord.amount),
  never incremented, so a retried or partially failed unit can't
  double-apply a payment
- Overpayment is rejected: 0 < amount <= amount_due
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PaymentRecord, Sale
from ..models.sales import (
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_REFUNDED,
)
from ..errors import StateError, ValidationError
from backoffice.money_utils import ZERO, money
from backoffice.time_utils import Clock, resolve_business_datetime, utcnow
from .commands import parse_business_date
from .concurrency import run_atomic
from .tenant_service import get_scoped, require_company


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHEQUE = "cheque"
METHOD_OTHER = "other"

PAYMENT_METHODS = (
    METHOD_CASH,
    METHOD_CARD,
    METHOD_BANK_TRANSFER,
    METHOD_CHEQUE,
    METHOD_OTHER,
)


def validate_payment_method(method: str | None) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {method}",
            details={"payment_method": method, "allowed": list(PAYMENT_METHODS)},
        )
    return method


# =============================================================================
# PAYMENT STATE
# =============================================================================

def derive_payment_state(total_amount, amount_paid) -> tuple[str, Decimal]:
    """
    (payment_status, amount_due) for a sale.

    paid >= total -> paid; 0 < paid < total -> partial; otherwise pending.
    amount_due = max(0, total - paid).
    """
    total = money(total_amount)
    paid = money(amount_paid)
    if paid >= total:
        status = PAYMENT_STATUS_PAID
    elif paid > 0:
        status = PAYMENT_STATUS_PARTIAL
    else:
        status = PAYMENT_STATUS_PENDING
    return status, max(ZERO, total - paid)


def refresh_sale_payment_state(sale: Sale) -> Sale:
    """Recompute amount_paid from payment history, then payment_status and amount_due."""
    paid = (
        db.session.query(func.coalesce(func.sum(PaymentRecord.amount), 0))
        .filter(PaymentRecord.sale_id == sale.id)
        .scalar()
    )
    sale.amount_paid = money(paid or ZERO)
    status, due = derive_payment_state(sale.total_amount, sale.amount_paid)
    sale.amount_due = due
    if sale.status != SALE_STATUS_REFUNDED:
        sale.payment_status = status
    else:
        sale.payment_status = PAYMENT_STATUS_REFUNDED
    db.session.flush()
    return sale


def record_payment(
    sale: Sale,
    amount: Decimal,
    method: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
    payment_date=None,
) -> PaymentRecord:
    """Insert one payment row. Caller validates and refreshes the sale."""
    payment = PaymentRecord(
        company_id=sale.company_id,
        sale_id=sale.id,
        user_id=actor_id,
        amount=money(amount),
        method=method,
        reference=reference,
        notes=notes,
        payment_date=payment_date,
    )
    db.session.add(payment)
    db.session.flush()
    return payment


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def add_payment(
    company_id: int,
    sale_id: int,
    amount,
    method: str,
    *,
    reference: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
    payment_date=None,
    clock: Clock = utcnow,
) -> PaymentRecord:
    """
    Add a payment to a sale.

    Raises:
        ValidationError: bad method, amount <= 0 or amount > amount_due
        StateError: sale is refunded or cancelled
    """
    try:
        amount = money(amount)
    except ValueError:
        raise ValidationError("Payment amount must be numeric", details={"field": "amount"})
    validate_payment_method(method)
    parse_business_date("payment_date", payment_date)

    def _op() -> PaymentRecord:
        require_company(company_id)
        sale = get_scoped(Sale, company_id, sale_id, "Sale", lock=True)

        if sale.status in (SALE_STATUS_REFUNDED, SALE_STATUS_CANCELLED):
            raise StateError(
                f"Cannot add payments to a {sale.status} sale",
                details={"sale_id": sale.id, "status": sale.status},
            )
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0", details={"field": "amount"})
        amount_due = money(sale.amount_due)
        if amount > amount_due:
            raise ValidationError(
                "Payment amount exceeds amount due",
                details={"amount": format(amount, "f"), "amount_due": format(amount_due, "f")},
            )

        payment = record_payment(
            sale,
            amount,
            method,
            reference=reference,
            notes=notes,
            actor_id=actor_id,
            payment_date=resolve_business_datetime(payment_date, clock),
        )
        refresh_sale_payment_state(sale)
        return payment

    payment = run_atomic(_op, operation="add_payment")
    current_app.logger.info(
        "Payment %s of %s recorded on sale %s (company %s)",
        payment.id, payment.amount, sale_id, company_id,
    )
    return payment


def list_payments(company_id: int, sale_id: int) -> list[PaymentRecord]:
    get_scoped(Sale, company_id, sale_id, "Sale")
    return (
        db.session.query(PaymentRecord)
        .filter(PaymentRecord.company_id == company_id, PaymentRecord.sale_id == sale_id)
        .order_by(PaymentRecord.payment_date.asc(), PaymentRecord.id.asc())
        .all()
    )
