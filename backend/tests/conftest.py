"""
Pytest fixtures for back-office core tests.

Provides the test database, two tenants for isolation checks, catalog and
party fixtures, and a fixed virtual clock.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Company, Category, Unit, Product, Customer, Supplier


FIXED_NOW = datetime(2026, 10, 17, 9, 30, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fixed_clock():
    """Virtual clock pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture(scope='function')
def company_a(db_session):
    """Create Company A (first tenant)."""
    company = Company(name="Company A - Acme Corp", code="ACME", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Create Company B (second tenant)."""
    company = Company(name="Company B - Beta Inc", code="BETA", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def unit_pcs(db_session, company_a):
    unit = Unit(company_id=company_a.id, name="Pieces", symbol="pcs", type="count",
                allow_decimals=False, decimal_places=0)
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def unit_kg(db_session, company_a):
    unit = Unit(company_id=company_a.id, name="Kilogram", symbol="kg", type="weight",
                allow_decimals=True, decimal_places=3)
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def category_a(db_session, company_a):
    category = Category(company_id=company_a.id, name="General")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with stock written directly (no movement)."""
    counter = {"n": 0}

    def _make(company, *, name=None, stock=0, price="100", cost="60", unit=None,
              category=None, minimum_stock=0, track_stock=True, cost_method="manual"):
        counter["n"] += 1
        product = Product(
            company_id=company.id,
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Product {counter['n']}",
            selling_price=Decimal(price),
            cost_price=Decimal(cost),
            stock_quantity=Decimal(stock),
            minimum_stock=Decimal(minimum_stock),
            unit_id=unit.id if unit else None,
            category_id=category.id if category else None,
            track_stock=track_stock,
            cost_method=cost_method,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product_a(make_product, company_a, unit_pcs, category_a):
    """Stock 10, minimum 2, price 100, cost 60."""
    return make_product(company_a, name="Widget", stock=10, minimum_stock=2,
                        price="100", cost="60", unit=unit_pcs, category=category_a)


@pytest.fixture(scope='function')
def product_b(make_product, company_b):
    """Product owned by Company B."""
    return make_product(company_b, name="Foreign Widget", stock=10)


@pytest.fixture(scope='function')
def customer_a(db_session, company_a):
    customer = Customer(company_id=company_a.id, name="Alice Buyer", customer_code="CUST-0001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, company_b):
    customer = Customer(company_id=company_b.id, name="Bob Foreign", customer_code="CUST-0001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def supplier_a(db_session, company_a):
    supplier = Supplier(company_id=company_a.id, name="Acme Wholesale", contact_person="Sam")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_b(db_session, company_b):
    supplier = Supplier(company_id=company_b.id, name="Beta Wholesale")
    db_session.add(supplier)
    db_session.commit()
    return supplier
