# Overview: Pytest coverage for the stock ledger.

"""
Stock Ledger Tests

Covers:
- clamp-at-zero and non-negativity over arbitrary delta sequences
- movement replay reproduces stock_quantity
- untracked products are left alone
- strict (no-clamp) debits
- compare-and-swap conflict handling
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from backoffice.errors import ConflictError, ValidationError
from backoffice.extensions import db
from backoffice.models import Product, StockMovement
from backoffice.services import ledger_service
from backoffice.services.concurrency import run_atomic
from backoffice.services.ledger_service import (
    MovementType,
    StockReference,
    StockReferenceType,
    adjust_stock,
    list_movements,
    replay_movements,
    verify_company_ledger,
    verify_product_ledger,
)


def _adjust(product_id, delta, **kwargs):
    def _op():
        product = db.session.get(Product, product_id)
        return adjust_stock(product, delta, reference=StockReference.manual_adjustment(), **kwargs)
    return run_atomic(_op, operation="test_adjust")


class TestAdjustStock:
    def test_credit_writes_movement(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)

        result = _adjust(product.id, 5)

        assert result.movement_created
        assert result.quantity == Decimal("5")
        movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
        assert movement.type == "in"
        assert movement.quantity == Decimal("5")
        assert movement.stock_before == Decimal("0")
        assert movement.stock_after == Decimal("5")
        assert movement.reference_type == StockReferenceType.MANUAL_ADJUSTMENT.value

    def test_debit_is_clamped_at_zero(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=3)

        result = _adjust(product.id, -5)

        assert result.quantity == Decimal("0")
        movement = result.movement
        assert movement.type == "out"
        assert movement.quantity == Decimal("-3")
        assert movement.stock_after == Decimal("0")
        assert db_session.get(Product, product.id).stock_quantity == Decimal("0")

    def test_zero_effective_delta_writes_nothing(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)

        result = _adjust(product.id, -2)

        assert not result.movement_created
        assert db_session.query(StockMovement).count() == 0

    def test_untracked_product_is_noop(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=4, track_stock=False)

        result = _adjust(product.id, -10)

        assert not result.movement_created
        assert result.quantity == Decimal("4")
        assert db_session.get(Product, product.id).stock_quantity == Decimal("4")
        assert db_session.query(StockMovement).count() == 0

    def test_strict_debit_rejects_instead_of_clamping(self, db_session, company_a, make_product):
        product = make_product(company_a, name="Bolt", stock=2)

        with pytest.raises(ValidationError) as exc:
            _adjust(product.id, -5, allow_clamp=False)

        detail = exc.value.details["items"][0]
        assert detail["product_id"] == product.id
        assert Decimal(detail["available"]) == Decimal("2")
        assert Decimal(detail["required"]) == Decimal("5")
        assert db_session.get(Product, product.id).stock_quantity == Decimal("2")
        assert db_session.query(StockMovement).count() == 0

    def test_explicit_movement_type_is_kept(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=5)

        result = _adjust(product.id, -1, movement_type=MovementType.ADJUSTMENT)

        assert result.movement.type == "adjustment"

    def test_version_bumped_on_every_write(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)
        start = product.version_id

        _adjust(product.id, 1)
        _adjust(product.id, 1)

        assert db_session.get(Product, product.id).version_id == start + 2

    def test_reference_must_be_typed(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=1)
        with pytest.raises(TypeError):
            adjust_stock(product, 1, reference="sale")


class TestNonNegativityAndReplay:
    DELTAS = [5, -2, -10, 7, "0.5", -3, -100, 12, -1, 0, 4]

    def test_stock_never_negative(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)

        for delta in self.DELTAS:
            result = _adjust(product.id, delta)
            assert result.quantity >= 0
            assert db_session.get(Product, product.id).stock_quantity >= 0

    def test_replay_reproduces_stock(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)

        for delta in self.DELTAS:
            _adjust(product.id, delta)

        product = db_session.get(Product, product.id)
        assert replay_movements(product.id) == product.stock_quantity
        assert verify_product_ledger(product) == []

    def test_verify_flags_direct_edits(self, db_session, company_a, make_product):
        product = make_product(company_a, stock=0)
        _adjust(product.id, 5)

        product = db_session.get(Product, product.id)
        product.stock_quantity = Decimal("9")
        db_session.commit()

        problems = verify_product_ledger(product)
        assert len(problems) == 1
        assert "replayed stock" in problems[0]
        assert verify_company_ledger(company_a.id) == {product.id: problems}


class TestCompareAndSwap:
    def test_lost_race_exhausts_into_conflict(self, db_session, company_a, make_product, monkeypatch):
        product = make_product(company_a, stock=10)
        calls = []

        def stale_read(product_id):
            calls.append(product_id)
            return SimpleNamespace(stock_quantity=Decimal("10"), version_id=-1)

        monkeypatch.setattr(ledger_service, "_read_stock_row", stale_read)

        with pytest.raises(ConflictError):
            _adjust(product.id, -1)

        assert len(calls) > 1
        assert db_session.get(Product, product.id).stock_quantity == Decimal("10")
        assert db_session.query(StockMovement).count() == 0

    def test_retry_after_one_lost_race_succeeds(self, db_session, company_a, make_product, monkeypatch):
        product = make_product(company_a, stock=10)
        real_read = ledger_service._read_stock_row
        state = {"first": True}

        def flaky_read(product_id):
            row = real_read(product_id)
            if state["first"]:
                state["first"] = False
                return SimpleNamespace(stock_quantity=row.stock_quantity, version_id=row.version_id - 1)
            return row

        monkeypatch.setattr(ledger_service, "_read_stock_row", flaky_read)

        result = _adjust(product.id, -4)

        assert result.quantity == Decimal("6")
        assert db_session.query(StockMovement).count() == 1


class TestListMovements:
    def test_newest_first_and_tenant_scoped(self, db_session, company_a, company_b, make_product, product_b):
        product = make_product(company_a, stock=0)
        _adjust(product.id, 1)
        _adjust(product.id, 2)

        movements = list_movements(company_a.id, product.id)
        assert [m.quantity for m in movements] == [Decimal("2"), Decimal("1")]

        with pytest.raises(ValidationError):
            list_movements(company_a.id, product_b.id)
