# Overview: Pytest coverage for split payments and payment state.

"""
Payment Service Tests

Scenarios:
- payment_status / amount_due derivation
- split payments on one sale move pending -> partial -> paid
- overpayment, zero amounts and unknown methods are rejected
- refunded and cancelled sales accept no payments
"""

from decimal import Decimal

import pytest

from backoffice.errors import NotFoundError, StateError, ValidationError
from backoffice.models import PaymentRecord, Sale
from backoffice.services.commands import RefundCommand, SaleCommand, SaleLineInput
from backoffice.services.payment_service import add_payment, derive_payment_state, list_payments
from backoffice.services.sales_service import create_sale, refund_sale, update_sale

from conftest import FIXED_NOW


@pytest.fixture
def unpaid_sale(db_session, company_a, product_a, fixed_clock):
    """Sale of 3 x 100 with nothing paid."""
    return create_sale(
        SaleCommand(company_id=company_a.id, items=(SaleLineInput(product_a.id, 3),), payment_method="cash"),
        clock=fixed_clock,
    )


class TestDerivePaymentState:
    def test_states(self):
        assert derive_payment_state("300", "0") == ("pending", Decimal("300.00"))
        assert derive_payment_state("300", "100") == ("partial", Decimal("200.00"))
        assert derive_payment_state("300", "300") == ("paid", Decimal("0"))

    def test_due_never_negative(self):
        status, due = derive_payment_state("100", "150")
        assert status == "paid"
        assert due == Decimal("0")


class TestAddPayment:
    def test_split_payments_progress_to_paid(self, db_session, company_a, unpaid_sale, fixed_clock):
        assert unpaid_sale.payment_status == "pending"

        add_payment(company_a.id, unpaid_sale.id, "100", "cash", clock=fixed_clock)
        sale = db_session.get(Sale, unpaid_sale.id)
        assert sale.payment_status == "partial"
        assert sale.amount_paid == Decimal("100.00")
        assert sale.amount_due == Decimal("200.00")

        add_payment(company_a.id, unpaid_sale.id, "100", "card", reference="AUTH-1", clock=fixed_clock)
        sale = db_session.get(Sale, unpaid_sale.id)
        assert sale.payment_status == "partial"
        assert sale.amount_due == Decimal("100.00")

        add_payment(company_a.id, unpaid_sale.id, "100", "bank_transfer", clock=fixed_clock)
        sale = db_session.get(Sale, unpaid_sale.id)
        assert sale.payment_status == "paid"
        assert sale.amount_paid == Decimal("300.00")
        assert sale.amount_due == Decimal("0.00")

        payments = list_payments(company_a.id, unpaid_sale.id)
        assert [p.method for p in payments] == ["cash", "card", "bank_transfer"]
        assert payments[1].reference == "AUTH-1"
        assert all(p.payment_date == FIXED_NOW for p in payments)

    def test_overpayment_rejected(self, db_session, company_a, unpaid_sale, fixed_clock):
        add_payment(company_a.id, unpaid_sale.id, "250", "cash", clock=fixed_clock)

        with pytest.raises(ValidationError) as exc:
            add_payment(company_a.id, unpaid_sale.id, "50.01", "cash", clock=fixed_clock)

        assert exc.value.details["amount_due"] == "50.00"
        assert db_session.query(PaymentRecord).count() == 1

    def test_payment_on_paid_sale_rejected(self, db_session, company_a, unpaid_sale, fixed_clock):
        add_payment(company_a.id, unpaid_sale.id, "300", "cash", clock=fixed_clock)

        with pytest.raises(ValidationError):
            add_payment(company_a.id, unpaid_sale.id, "1", "cash", clock=fixed_clock)

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount_rejected(self, db_session, company_a, unpaid_sale, amount):
        with pytest.raises(ValidationError):
            add_payment(company_a.id, unpaid_sale.id, amount, "cash")

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", float("nan")])
    def test_non_finite_amount_rejected(self, db_session, company_a, unpaid_sale, amount):
        with pytest.raises(ValidationError) as exc:
            add_payment(company_a.id, unpaid_sale.id, amount, "cash")
        assert exc.value.details == {"field": "amount"}
        assert db_session.query(PaymentRecord).count() == 0

    def test_unparseable_payment_date_rejected(self, db_session, company_a, unpaid_sale):
        with pytest.raises(ValidationError) as exc:
            add_payment(company_a.id, unpaid_sale.id, "10", "cash", payment_date="tomorrow")
        assert exc.value.details == {"field": "payment_date"}
        assert db_session.query(PaymentRecord).count() == 0

    def test_unknown_method_rejected(self, db_session, company_a, unpaid_sale):
        with pytest.raises(ValidationError):
            add_payment(company_a.id, unpaid_sale.id, "10", "iou")

    def test_refunded_sale_rejects_payment(self, db_session, company_a, unpaid_sale):
        refund_sale(RefundCommand(company_id=company_a.id, sale_id=unpaid_sale.id, reason="Returned"))

        with pytest.raises(StateError):
            add_payment(company_a.id, unpaid_sale.id, "10", "cash")

    def test_cancelled_sale_rejects_payment(self, db_session, company_a, unpaid_sale):
        update_sale(company_a.id, unpaid_sale.id, status="cancelled")

        with pytest.raises(StateError):
            add_payment(company_a.id, unpaid_sale.id, "10", "cash")

    def test_foreign_sale_not_found(self, db_session, company_a, company_b, unpaid_sale):
        with pytest.raises(NotFoundError):
            add_payment(company_b.id, unpaid_sale.id, "10", "cash")
        with pytest.raises(NotFoundError):
            list_payments(company_b.id, unpaid_sale.id)

    def test_refund_keeps_refunded_payment_status(self, db_session, company_a, unpaid_sale):
        add_payment(company_a.id, unpaid_sale.id, "100", "cash")
        refund_sale(RefundCommand(company_id=company_a.id, sale_id=unpaid_sale.id, reason="Returned"))

        sale = db_session.get(Sale, unpaid_sale.id)
        assert sale.payment_status == "refunded"
        assert sale.amount_paid == Decimal("100.00")
