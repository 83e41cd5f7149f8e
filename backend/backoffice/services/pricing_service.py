# Overview: Line-item and document-total arithmetic; pure functions, no I/O.

"""
Pricing rules (authoritative)

Line:
- subtotal = quantity * unit_price
- discount = discount_amount + subtotal * discount_percentage / 100
  (flat and percentage discounts stack; they are not alternatives)
- line_total = subtotal - discount (NOT floored at zero; over-discounted
  lines produce a negative line_total)
- cost_total = quantity * cost_price
- profit_amount = line_total - cost_total

Document header (sales and purchases):
- subtotal = sum(line_total)
- discount = discount_amount + subtotal * discount_percentage / 100
- total_amount = subtotal - discount + tax_amount
- total_cost = sum(cost_total); profit_amount = total_amount - total_cost
- profit_margin = profit_amount / total_cost * 100, 0 when total_cost is 0

Money outputs are rounded half-up to cents. Profit is computed from the
rounded figures so the stored identities hold exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from backoffice.money_utils import HUNDRED, ZERO, money, to_decimal


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    discount: Decimal
    line_total: Decimal
    cost_total: Decimal
    profit_amount: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    discount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    total_cost: Decimal
    profit_amount: Decimal
    profit_margin: Decimal


def effective_discount(base, discount_amount=0, discount_percentage=0) -> Decimal:
    """Flat discount plus percentage of base, unrounded."""
    base = to_decimal(base)
    return to_decimal(discount_amount) + base * to_decimal(discount_percentage) / HUNDRED


def compute_line(
    quantity,
    unit_price,
    discount_amount=0,
    discount_percentage=0,
    cost_price=0,
) -> LineAmounts:
    qty = to_decimal(quantity)
    raw_subtotal = qty * to_decimal(unit_price)
    raw_discount = effective_discount(raw_subtotal, discount_amount, discount_percentage)

    line_total = money(raw_subtotal - raw_discount)
    cost_total = money(qty * to_decimal(cost_price))

    return LineAmounts(
        subtotal=money(raw_subtotal),
        discount=money(raw_discount),
        line_total=line_total,
        cost_total=cost_total,
        profit_amount=line_total - cost_total,
    )


def compute_document_totals(
    line_totals: Iterable,
    discount_amount=0,
    discount_percentage=0,
    tax_amount=0,
    cost_totals: Iterable = (),
) -> DocumentTotals:
    subtotal = money(sum((to_decimal(v) for v in line_totals), ZERO))
    discount = money(effective_discount(subtotal, discount_amount, discount_percentage))
    tax = money(tax_amount)
    total_amount = subtotal - discount + tax

    total_cost = money(sum((to_decimal(v) for v in cost_totals), ZERO))
    profit_amount = total_amount - total_cost
    if total_cost == 0:
        profit_margin = ZERO
    else:
        profit_margin = money(profit_amount / total_cost * HUNDRED)

    return DocumentTotals(
        subtotal=subtotal,
        discount=discount,
        tax_amount=tax,
        total_amount=total_amount,
        total_cost=total_cost,
        profit_amount=profit_amount,
        profit_margin=profit_margin,
    )
