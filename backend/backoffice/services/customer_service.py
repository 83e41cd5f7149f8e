# Overview: Customer creation with per-company CUST-NNNN codes.

from __future__ import annotations

from flask import current_app

from ..models import Customer
from ..errors import ValidationError
from .concurrency import run_atomic
from .numbering_service import insert_numbered, next_customer_code
from .tenant_service import get_scoped, require_company

CUSTOMER_TYPES = ("individual", "business")


def create_customer(
    company_id: int,
    name: str,
    *,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    customer_type: str = "individual",
    tax_number: str | None = None,
) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Customer name is required", details={"field": "name"})
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            f"Invalid customer type: {customer_type}",
            details={"type": customer_type, "allowed": list(CUSTOMER_TYPES)},
        )

    def _op() -> Customer:
        company = require_company(company_id)
        customer = Customer(
            company_id=company.id,
            name=name,
            email=email,
            phone=phone,
            address=address,
            type=customer_type,
            tax_number=tax_number,
        )
        return insert_numbered(
            customer,
            "customer_code",
            lambda: next_customer_code(company.id),
            "uq_customers_company_code",
        )

    customer = run_atomic(_op, operation="create_customer")
    current_app.logger.info("Customer %s created (company %s)", customer.customer_code, company_id)
    return customer


def get_customer(company_id: int, customer_id: int) -> Customer:
    return get_scoped(Customer, company_id, customer_id, "Customer")
