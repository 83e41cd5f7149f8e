# Overview: Tenant-scoped command objects consumed by the transaction services.

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Union

from ..errors import ValidationError
from backoffice.money_utils import HUNDRED, ZERO, to_decimal
from backoffice.time_utils import resolve_business_datetime


class DocumentType(str, enum.Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    REFUND = "refund"
    PURCHASE_CANCELLATION = "purchase_cancellation"


DateInput = Union[datetime, date, str, None]


def parse_amount(name: str, value: Any, *, allow_zero: bool = True, maximum: Decimal | None = None) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{name} must be numeric", details={"field": name})
    if amount < 0 or (not allow_zero and amount == 0):
        bound = "greater than or equal to 0" if allow_zero else "greater than 0"
        raise ValidationError(f"{name} must be {bound}", details={"field": name})
    if maximum is not None and amount > maximum:
        raise ValidationError(f"{name} must be at most {maximum}", details={"field": name})
    return amount


def parse_business_date(name: str, value) -> datetime | None:
    """Normalized document date, or None when the clock should decide."""
    if value is None:
        return None
    try:
        return resolve_business_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime", details={"field": name})


def _require_items(items) -> None:
    if not items:
        raise ValidationError("At least one item is required", details={"field": "items"})


def _check_header(command) -> None:
    parse_amount("discount_amount", command.discount_amount)
    parse_amount("discount_percentage", command.discount_percentage, maximum=HUNDRED)
    parse_amount("tax_amount", command.tax_amount)


# =============================================================================
# SALES
# =============================================================================

@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: Any
    # None -> product's current selling price
    unit_price: Any = None
    discount_amount: Any = ZERO
    discount_percentage: Any = ZERO

    def validate(self, index: int) -> None:
        prefix = f"items[{index}]"
        parse_amount(f"{prefix}.quantity", self.quantity, allow_zero=False)
        if self.unit_price is not None:
            parse_amount(f"{prefix}.unit_price", self.unit_price)
        parse_amount(f"{prefix}.discount_amount", self.discount_amount)
        parse_amount(f"{prefix}.discount_percentage", self.discount_percentage, maximum=HUNDRED)


@dataclass(frozen=True)
class SaleCommand:
    company_id: int
    items: tuple[SaleLineInput, ...]
    payment_method: str
    actor_id: int | None = None
    customer_id: int | None = None
    discount_amount: Any = ZERO
    discount_percentage: Any = ZERO
    tax_amount: Any = ZERO
    amount_paid: Any = ZERO
    notes: str | None = None
    sale_date: DateInput = None
    status: str = "completed"

    document_type = DocumentType.SALE

    def validate(self) -> None:
        """Shape checks only; referential checks need the database."""
        _require_items(self.items)
        for index, item in enumerate(self.items):
            item.validate(index)
        _check_header(self)
        parse_amount("amount_paid", self.amount_paid)
        parse_business_date("sale_date", self.sale_date)


@dataclass(frozen=True)
class RefundCommand:
    company_id: int
    sale_id: int
    reason: str
    # None -> full sale total
    amount: Any = None
    restock: bool = False
    actor_id: int | None = None

    document_type = DocumentType.REFUND

    def validate(self) -> None:
        if not (self.reason or "").strip():
            raise ValidationError("Refund reason is required", details={"field": "reason"})
        if self.amount is not None:
            parse_amount("amount", self.amount, allow_zero=False)


# =============================================================================
# PURCHASES
# =============================================================================

@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: Any
    unit_cost: Any
    discount_amount: Any = ZERO
    discount_percentage: Any = ZERO

    def validate(self, index: int) -> None:
        prefix = f"items[{index}]"
        parse_amount(f"{prefix}.quantity", self.quantity, allow_zero=False)
        parse_amount(f"{prefix}.unit_cost", self.unit_cost)
        parse_amount(f"{prefix}.discount_amount", self.discount_amount)
        parse_amount(f"{prefix}.discount_percentage", self.discount_percentage, maximum=HUNDRED)


@dataclass(frozen=True)
class PurchaseCommand:
    company_id: int
    supplier_id: int
    items: tuple[PurchaseLineInput, ...]
    actor_id: int | None = None
    discount_amount: Any = ZERO
    discount_percentage: Any = ZERO
    tax_amount: Any = ZERO
    notes: str | None = None
    purchase_date: DateInput = None

    document_type = DocumentType.PURCHASE

    def validate(self) -> None:
        if not self.supplier_id:
            raise ValidationError("supplier_id is required", details={"field": "supplier_id"})
        _require_items(self.items)
        for index, item in enumerate(self.items):
            item.validate(index)
        _check_header(self)
        parse_business_date("purchase_date", self.purchase_date)


@dataclass(frozen=True)
class CancelPurchaseCommand:
    company_id: int
    purchase_id: int
    reason: str | None = None
    actor_id: int | None = None

    document_type = DocumentType.PURCHASE_CANCELLATION

    def validate(self) -> None:
        return None
