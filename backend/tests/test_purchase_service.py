# Overview: Pytest coverage for purchases and purchase cancellation.

"""
Purchase Service Tests

Scenarios:
- purchase credits stock, numbers the document and refreshes cost rollups
- cancellation is refused once the purchased stock has been sold
- successful cancellation reverses stock and heals the cost rollup
"""

from datetime import datetime
from decimal import Decimal

import pytest

from backoffice.errors import NotFoundError, StateError, ValidationError
from backoffice.models import Product, Purchase, PurchaseItem, StockMovement
from backoffice.services.commands import (
    CancelPurchaseCommand,
    PurchaseCommand,
    PurchaseLineInput,
    SaleCommand,
    SaleLineInput,
)
from backoffice.services.purchase_service import cancel_purchase, create_purchase, get_purchase
from backoffice.services.sales_service import create_sale
from backoffice.services.transaction_service import execute

from conftest import FIXED_NOW


def _purchase(company, supplier, *lines, **kwargs):
    return PurchaseCommand(company_id=company.id, supplier_id=supplier.id, items=tuple(lines), **kwargs)


class TestCreatePurchase:
    def test_purchase_credits_stock(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 20, "12.50")),
            clock=fixed_clock,
        )

        assert purchase.purchase_number == "PUR-20261017-0001"
        assert purchase.status == "completed"
        assert purchase.purchase_date == FIXED_NOW
        assert purchase.subtotal == Decimal("250.00")
        assert purchase.total_amount == Decimal("250.00")

        product = db_session.get(Product, product.id)
        assert product.stock_quantity == Decimal("20")
        assert product.last_purchase_cost == Decimal("12.50")
        assert product.last_purchase_date == FIXED_NOW
        # manual cost method keeps the catalog cost
        assert product.cost_price == Decimal("60")

        movement = db_session.query(StockMovement).one()
        assert movement.type == "in"
        assert movement.reference_type == "purchase"
        assert movement.reference_id == purchase.id
        assert movement.stock_before == Decimal("0")
        assert movement.stock_after == Decimal("20")

        item = db_session.query(PurchaseItem).one()
        assert item.product_name == product.name
        assert item.cost_total == Decimal("250.00")

    def test_last_purchase_cost_method_updates_cost_price(self, db_session, company_a, supplier_a,
                                                          make_product, fixed_clock):
        product = make_product(company_a, stock=0, cost_method="last_purchase")

        create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 5, "42")),
            clock=fixed_clock,
        )

        assert db_session.get(Product, product.id).cost_price == Decimal("42")

    def test_header_discount_and_tax(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        purchase = create_purchase(
            _purchase(
                company_a,
                supplier_a,
                PurchaseLineInput(product.id, 10, "10", discount_amount="5"),
                discount_percentage="10",
                tax_amount="7",
            ),
            clock=fixed_clock,
        )

        assert purchase.subtotal == Decimal("95.00")
        assert purchase.discount_amount == Decimal("9.50")
        assert purchase.total_amount == Decimal("92.50")

    def test_inactive_supplier_rejected(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        supplier_a.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            create_purchase(
                _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 1, "1")),
                clock=fixed_clock,
            )
        assert db_session.query(Purchase).count() == 0

    def test_foreign_supplier_rejected(self, db_session, company_a, supplier_b, make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        with pytest.raises(NotFoundError):
            create_purchase(
                _purchase(company_a, supplier_b, PurchaseLineInput(product.id, 1, "1")),
                clock=fixed_clock,
            )

    def test_foreign_product_rejected(self, db_session, company_a, supplier_a, product_b, fixed_clock):
        with pytest.raises(NotFoundError):
            create_purchase(
                _purchase(company_a, supplier_a, PurchaseLineInput(product_b.id, 1, "1")),
                clock=fixed_clock,
            )
        assert db_session.get(Product, product_b.id).stock_quantity == Decimal("10")

    def test_unparseable_purchase_date_rejected(self, db_session, company_a, supplier_a,
                                                make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        with pytest.raises(ValidationError) as exc:
            create_purchase(
                _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 1, "1"),
                          purchase_date="last tuesday"),
                clock=fixed_clock,
            )

        assert exc.value.details == {"field": "purchase_date"}
        assert db_session.query(Purchase).count() == 0
        assert db_session.get(Product, product.id).stock_quantity == Decimal("0")

    def test_non_finite_unit_cost_rejected(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        with pytest.raises(ValidationError) as exc:
            create_purchase(
                _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 1, "Infinity")),
                clock=fixed_clock,
            )
        assert exc.value.details == {"field": "items[0].unit_cost"}

    def test_execute_dispatches_purchase_command(self, db_session, company_a, supplier_a,
                                                 make_product, fixed_clock):
        product = make_product(company_a, stock=0)

        purchase = execute(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 2, "3")),
            clock=fixed_clock,
        )

        assert get_purchase(company_a.id, purchase.id).purchase_number == "PUR-20261017-0001"


class TestCancelPurchase:
    def test_cancel_refused_after_stock_sold(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        """Receive 20, sell 5, cancel -> refused; stock stays 15, purchase completed."""
        product = make_product(company_a, name="Cable", stock=0)
        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 20, "5")),
            clock=fixed_clock,
        )
        create_sale(
            SaleCommand(company_id=company_a.id, items=(SaleLineInput(product.id, 5),), payment_method="cash"),
            clock=fixed_clock,
        )

        with pytest.raises(ValidationError) as exc:
            cancel_purchase(CancelPurchaseCommand(company_id=company_a.id, purchase_id=purchase.id),
                            clock=fixed_clock)

        assert "Cable" in exc.value.message
        detail = exc.value.details["items"][0]
        assert Decimal(detail["available"]) == Decimal("15")
        assert Decimal(detail["required"]) == Decimal("20")
        assert db_session.get(Product, product.id).stock_quantity == Decimal("15")
        assert db_session.get(Purchase, purchase.id).status == "completed"
        assert db_session.query(StockMovement).filter_by(reference_type="purchase_cancellation").count() == 0

    def test_cancel_reverses_stock(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 20, "5")),
            clock=fixed_clock,
        )

        cancelled = cancel_purchase(
            CancelPurchaseCommand(company_id=company_a.id, purchase_id=purchase.id,
                                  reason="Wrong delivery", actor_id=7),
            clock=fixed_clock,
        )

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at == FIXED_NOW
        assert cancelled.cancelled_by_user_id == 7
        assert cancelled.cancellation_reason == "Wrong delivery"

        product = db_session.get(Product, product.id)
        assert product.stock_quantity == Decimal("0")
        assert product.last_purchase_cost is None
        assert product.last_purchase_date is None

        reversal = db_session.query(StockMovement).filter_by(reference_type="purchase_cancellation").one()
        assert reversal.type == "adjustment"
        assert reversal.quantity == Decimal("-20")
        assert reversal.reference_id == purchase.id

    def test_cancel_falls_back_to_previous_purchase_cost(self, db_session, company_a, supplier_a,
                                                         make_product):
        product = make_product(company_a, stock=0, cost_method="last_purchase")
        create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 5, "10"),
                      purchase_date=datetime(2026, 10, 1, 12, 0)),
            clock=lambda: FIXED_NOW,
        )
        later = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 5, "14"),
                      purchase_date=datetime(2026, 10, 15, 12, 0)),
            clock=lambda: FIXED_NOW,
        )
        assert db_session.get(Product, product.id).last_purchase_cost == Decimal("14.00")

        cancel_purchase(CancelPurchaseCommand(company_id=company_a.id, purchase_id=later.id))

        product = db_session.get(Product, product.id)
        assert product.last_purchase_cost == Decimal("10.00")
        assert product.last_purchase_date == datetime(2026, 10, 1, 12, 0)
        assert product.cost_price == Decimal("10")
        assert product.stock_quantity == Decimal("5")

    def test_cancel_twice_rejected(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 3, "5")),
            clock=fixed_clock,
        )
        command = CancelPurchaseCommand(company_id=company_a.id, purchase_id=purchase.id)
        cancel_purchase(command, clock=fixed_clock)

        with pytest.raises(StateError):
            cancel_purchase(command, clock=fixed_clock)

    def test_cancel_foreign_purchase_not_found(self, db_session, company_a, company_b, supplier_a,
                                               make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 3, "5")),
            clock=fixed_clock,
        )

        with pytest.raises(NotFoundError):
            cancel_purchase(CancelPurchaseCommand(company_id=company_b.id, purchase_id=purchase.id))
        assert db_session.get(Product, product.id).stock_quantity == Decimal("3")


class TestPurchasePayload:
    def test_to_dict_after_cancellation(self, db_session, company_a, supplier_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        purchase = create_purchase(
            _purchase(company_a, supplier_a, PurchaseLineInput(product.id, 4, "2.5")),
            clock=fixed_clock,
        )
        cancel_purchase(
            CancelPurchaseCommand(company_id=company_a.id, purchase_id=purchase.id, reason="Duplicate"),
            clock=fixed_clock,
        )

        data = get_purchase(company_a.id, purchase.id).to_dict()

        assert data["status"] == "cancelled"
        assert data["cancelled_at"] == "2026-10-17T09:30:00Z"
        assert data["cancellation_reason"] == "Duplicate"
        assert data["total_amount"] == "10.00"
        assert len(data["items"]) == 1
