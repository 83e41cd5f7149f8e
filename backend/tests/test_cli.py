# Overview: Pytest coverage for the Flask CLI maintenance commands.

from decimal import Decimal

from backoffice.models import Company, Customer, Product, Unit
from backoffice.services.commands import SaleCommand, SaleLineInput
from backoffice.services.inventory_service import record_initial_stock
from backoffice.services.sales_service import create_sale


def _run(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


class TestCompaniesCommands:
    def test_create_and_list(self, app, db_session):
        result = _run(app, "companies", "create", "--name", "Gamma Ltd", "--code", "GAMMA")
        assert result.exit_code == 0
        assert "PASS Created company: Gamma Ltd" in result.output
        assert db_session.query(Company).filter_by(code="GAMMA").count() == 1

        listing = _run(app, "companies", "list")
        assert "GAMMA\tGamma Ltd\tactive" in listing.output

    def test_duplicate_code(self, app, db_session, company_a):
        result = _run(app, "companies", "create", "--name", "Copy", "--code", "ACME")
        assert "FAIL" in result.output
        assert db_session.query(Company).count() == 1


class TestUnitsCommands:
    def test_seed(self, app, db_session, company_a):
        result = _run(app, "units", "seed", "--company-id", str(company_a.id))
        assert result.exit_code == 0
        assert result.output.startswith("PASS Seeded")
        assert db_session.query(Unit).filter_by(company_id=company_a.id, symbol="kg").count() == 1

    def test_seed_unknown_company(self, app, db_session):
        result = _run(app, "units", "seed", "--company-id", "99999")
        assert "FAIL Company not found" in result.output


class TestLedgerCommands:
    def test_verify_consistent_ledger(self, app, db_session, company_a, make_product, fixed_clock):
        product = make_product(company_a, stock=0)
        record_initial_stock(company_a.id, product.id, 10)
        create_sale(
            SaleCommand(company_id=company_a.id, items=(SaleLineInput(product.id, 2),),
                        payment_method="cash"),
            clock=fixed_clock,
        )

        result = _run(app, "ledger", "verify", "--company-id", str(company_a.id))

        assert result.exit_code == 0
        assert "PASS Stock ledger is consistent" in result.output

    def test_verify_reports_drift(self, app, db_session, company_a, product_a, fixed_clock):
        create_sale(
            SaleCommand(company_id=company_a.id, items=(SaleLineInput(product_a.id, 2),),
                        payment_method="cash"),
            clock=fixed_clock,
        )
        product = db_session.get(Product, product_a.id)
        product.stock_quantity = Decimal("100")
        db_session.commit()

        result = _run(app, "ledger", "verify", "--company-id", str(company_a.id),
                      "--product-id", str(product_a.id))

        assert result.exit_code == 1
        assert f"FAIL product {product_a.id}" in result.output

    def test_rollups(self, app, db_session, company_a, product_a, customer_a, fixed_clock):
        create_sale(
            SaleCommand(company_id=company_a.id, items=(SaleLineInput(product_a.id, 1),),
                        payment_method="cash", customer_id=customer_a.id),
            clock=fixed_clock,
        )
        customer = db_session.get(Customer, customer_a.id)
        customer.total_orders = 0
        db_session.commit()

        result = _run(app, "ledger", "rollups", "--company-id", str(company_a.id))

        assert "PASS Recomputed rollups for 1 customers and 1 products" in result.output
        assert db_session.get(Customer, customer_a.id).total_orders == 1

    def test_low_stock(self, app, db_session, company_a, make_product):
        make_product(company_a, name="Nearly Gone", stock=1, minimum_stock=3)

        result = _run(app, "ledger", "low-stock", "--company-id", str(company_a.id))

        assert "Nearly Gone" in result.output
