# Overview: Flask CLI command groups for tenant bootstrap, unit seeding and ledger maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "backoffice:create_app".
# - Use: python -m flask <group> <command> [options]
#
# Companies (tenants):
# - python -m flask companies create --name "Acme Corp" --code "ACME"
#   Create a new company.
# - python -m flask companies list
#   List all companies with active status.
#
# Units:
# - python -m flask units seed --company-id 1
#   Create the default unit catalogue (pcs, kg, L, ...). Idempotent.
#
# Ledger maintenance:
# - python -m flask ledger verify --company-id 1 [--product-id 5]
#   Replay stock movements and report products whose stock disagrees.
# - python -m flask ledger rollups --company-id 1
#   Recompute customer totals and product last-purchase costs.
# - python -m flask ledger low-stock --company-id 1
#   List tracked products at or below minimum stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Company, Product
from .errors import BackofficeError
from .services.concurrency import run_atomic
from .services.inventory_service import low_stock_products
from .services.ledger_service import verify_company_ledger, verify_product_ledger
from .services.rollup_service import recompute_company_rollups
from .services.tenant_service import get_scoped, require_company
from .services.unit_service import seed_default_units


@click.group('companies')
def companies_group():
    """Company (tenant) management."""


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_company_cli(name, code):
    """Create a new company (tenant)."""
    existing = db.session.query(Company).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Company with code '{code}' already exists")
        return

    company = Company(name=name, code=code, is_active=True)
    db.session.add(company)
    db.session.commit()

    click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")


@companies_group.command('list')
@with_appcontext
def list_companies_cli():
    """List all companies."""
    companies = db.session.query(Company).order_by(Company.id.asc()).all()
    if not companies:
        click.echo("No companies found")
        return
    for company in companies:
        status = "active" if company.is_active else "inactive"
        click.echo(f"{company.id}\t{company.code or '-'}\t{company.name}\t{status}")


@click.group('units')
def units_group():
    """Unit-of-measure catalogue commands."""


@units_group.command('seed')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def seed_units_cli(company_id):
    """Seed the default unit catalogue for a company."""
    try:
        created = run_atomic(
            lambda: seed_default_units(require_company(company_id).id),
            operation="seed_units",
        )
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Seeded {len(created)} units for company {company_id}")


@click.group('ledger')
def ledger_group():
    """Stock ledger and rollup maintenance."""


@ledger_group.command('verify')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--product-id', type=int, help='Only verify this product')
@with_appcontext
def verify_ledger_cli(company_id, product_id):
    """Replay stock movements and report discrepancies."""
    try:
        require_company(company_id)
        if product_id is not None:
            product = get_scoped(Product, company_id, product_id, "Product")
            problems = verify_product_ledger(product)
            report = {product.id: problems} if problems else {}
        else:
            report = verify_company_ledger(company_id)
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        return

    if not report:
        click.echo("PASS Stock ledger is consistent")
        return

    for pid, problems in report.items():
        for problem in problems:
            click.echo(f"FAIL product {pid}: {problem}")
    raise SystemExit(1)


@ledger_group.command('rollups')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def recompute_rollups_cli(company_id):
    """Recompute every customer and product rollup for a company."""
    def _op():
        require_company(company_id)
        return recompute_company_rollups(company_id)

    try:
        counts = run_atomic(_op, operation="recompute_rollups")
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(
        f"PASS Recomputed rollups for {counts['customers']} customers and {counts['products']} products"
    )


@ledger_group.command('low-stock')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def low_stock_cli(company_id):
    """List tracked products at or below minimum stock."""
    try:
        products = low_stock_products(company_id)
    except BackofficeError as e:
        click.echo(f"FAIL {e.message}")
        return
    if not products:
        click.echo("No low-stock products")
        return
    for product in products:
        click.echo(f"{product.id}\t{product.sku or '-'}\t{product.name}\t{product.display_stock}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(companies_group)
    app.cli.add_command(units_group)
    app.cli.add_command(ledger_group)
