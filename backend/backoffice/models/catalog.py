from __future__ import annotations

from ..extensions import db
from backoffice.money_utils import ZERO, HUNDRED, decimal_str, money, to_decimal
from backoffice.time_utils import to_utc_z


COST_METHOD_MANUAL = "manual"
COST_METHOD_LAST_PURCHASE = "last_purchase"
COST_METHODS = (COST_METHOD_MANUAL, COST_METHOD_LAST_PURCHASE)


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_categories_company_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("categories", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Unit(db.Model):
    """
    Unit of measure (pcs, kg, L, ...).

    Units are metadata owned by catalog management. The core only consumes
    allow_decimals / decimal_places to format and sanity-check quantities.
    """
    __tablename__ = "units"
    __table_args__ = (
        db.UniqueConstraint("company_id", "symbol", name="uq_units_company_symbol"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(64), nullable=False)
    symbol = db.Column(db.String(16), nullable=False)
    # count, weight, volume, length, area, custom
    type = db.Column(db.String(16), nullable=False, default="count")

    allow_decimals = db.Column(db.Boolean, nullable=False, default=False)
    decimal_places = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("units", lazy=True))

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.symbol})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "symbol": self.symbol,
            "type": self.type,
            "allow_decimals": self.allow_decimals,
            "decimal_places": self.decimal_places,
            "is_active": self.is_active,
            "display_name": self.display_name,
        }


class Product(db.Model):
    """
    Product master data plus the current stock quantity.

    STOCK: stock_quantity is only ever written by the stock ledger
    (services.ledger_service.adjust_stock), which appends a StockMovement in
    the same transaction. When track_stock is False the quantity is
    informational and the ledger leaves it alone.

    CONCURRENCY: version_id is the compare-and-swap token for stock writes.
    It is deliberately not the mapper's version_id_col; the ledger bumps it
    with a conditional UPDATE and retries on mismatch.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
        db.Index("ix_products_company_name", "company_id", "name"),
        db.Index("ix_products_company_active", "company_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(128), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    cost_price = db.Column(db.Numeric(10, 2), nullable=False, default=ZERO)
    selling_price = db.Column(db.Numeric(10, 2), nullable=False, default=ZERO)

    stock_quantity = db.Column(db.Numeric(15, 6), nullable=False, default=ZERO)
    minimum_stock = db.Column(db.Numeric(15, 6), nullable=False, default=ZERO)
    maximum_stock = db.Column(db.Numeric(15, 6), nullable=True)

    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Purchase tracking (maintained by rollup_service)
    last_purchase_cost = db.Column(db.Numeric(10, 2), nullable=True)
    last_purchase_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cost_method = db.Column(db.String(16), nullable=False, default=COST_METHOD_MANUAL)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    unit = db.relationship("Unit", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} company_id={self.company_id}>"

    @property
    def is_low_stock(self) -> bool:
        if not self.track_stock:
            return False
        return to_decimal(self.stock_quantity) <= to_decimal(self.minimum_stock)

    @property
    def stock_status(self) -> str:
        if not self.track_stock:
            return "untracked"
        stock = to_decimal(self.stock_quantity)
        if stock == 0:
            return "out_of_stock"
        if self.is_low_stock:
            return "low_stock"
        if self.maximum_stock and stock >= to_decimal(self.maximum_stock):
            return "overstock"
        return "in_stock"

    @property
    def profit_margin(self):
        """Markup on cost in percent, 0 when the product has no cost."""
        cost = to_decimal(self.cost_price)
        if cost == 0:
            return ZERO
        selling = to_decimal(self.selling_price)
        return money((selling - cost) / cost * HUNDRED)

    @property
    def display_stock(self) -> str:
        from backoffice.services.unit_service import display_quantity
        return display_quantity(self.stock_quantity, self.unit)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "category_id": self.category_id,
            "unit_id": self.unit_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "cost_price": decimal_str(self.cost_price),
            "selling_price": decimal_str(self.selling_price),
            "stock_quantity": decimal_str(self.stock_quantity),
            "display_stock": self.display_stock,
            "minimum_stock": decimal_str(self.minimum_stock),
            "maximum_stock": decimal_str(self.maximum_stock),
            "track_stock": self.track_stock,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "stock_status": self.stock_status,
            "profit_margin": decimal_str(self.profit_margin),
            "last_purchase_cost": decimal_str(self.last_purchase_cost),
            "last_purchase_date": to_utc_z(self.last_purchase_date),
            "cost_method": self.cost_method,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
