from __future__ import annotations

from ..extensions import db
from backoffice.money_utils import ZERO, decimal_str
from backoffice.time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PENDING = "pending"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"


class Sale(db.Model):
    """
    Sale document.

    Created atomically with its items and stock debits; afterwards only
    payments (amount_paid / amount_due / payment_status), header edits and
    refund touch it. Items are never added or removed after creation.

    INVARIANTS (money to the cent):
    - subtotal = sum(SaleItem.line_total)
    - total_amount = subtotal - discount_amount + tax_amount
    - total_cost = sum(SaleItem.cost_total)
    - profit_amount = total_amount - total_cost
    - profit_margin = profit_amount / total_cost * 100 (0 when total_cost = 0)
    - amount_paid = sum(PaymentRecord.amount)
    - amount_due = max(0, total_amount - amount_paid)

    discount_amount stores the effective header discount (flat + percentage).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sale_number", name="uq_sales_company_number"),
        db.Index("ix_sales_company_status_date", "company_id", "status", "sale_date"),
        db.Index("ix_sales_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    # Human-readable number (e.g., "SALE-20261017-0001")
    sale_number = db.Column(db.String(32), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    total_cost = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    profit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    profit_margin = db.Column(db.Numeric(9, 2), nullable=False, default=ZERO)

    payment_method = db.Column(db.String(32), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    amount_due = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    company = db.relationship("Company", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship("SaleItem", back_populates="sale", lazy=True, order_by="SaleItem.id")
    payments = db.relationship("PaymentRecord", back_populates="sale", lazy=True, order_by="PaymentRecord.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status}>"

    @property
    def display_status(self) -> str:
        return self.status.replace("_", " ").capitalize()

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "sale_number": self.sale_number,
            "subtotal": decimal_str(self.subtotal),
            "discount_amount": decimal_str(self.discount_amount),
            "discount_percentage": decimal_str(self.discount_percentage),
            "tax_amount": decimal_str(self.tax_amount),
            "total_amount": decimal_str(self.total_amount),
            "total_cost": decimal_str(self.total_cost),
            "profit_amount": decimal_str(self.profit_amount),
            "profit_margin": decimal_str(self.profit_margin),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "amount_paid": decimal_str(self.amount_paid),
            "amount_due": decimal_str(self.amount_due),
            "status": self.status,
            "display_status": self.display_status,
            "notes": self.notes,
            "sale_date": to_utc_z(self.sale_date),
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    product_name / product_sku / cost_price are snapshots taken at sale time
    and never follow later catalog changes, so historical profit stays exact.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Numeric(15, 6), nullable=False)
    unit_price = db.Column(db.Numeric(12, 4), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)

    cost_price = db.Column(db.Numeric(12, 4), nullable=False, default=ZERO)
    cost_total = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    profit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")
    unit = db.relationship("Unit")

    @property
    def display_quantity(self) -> str:
        from backoffice.services.unit_service import display_quantity
        return display_quantity(self.quantity, self.unit)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": decimal_str(self.quantity),
            "display_quantity": self.display_quantity,
            "unit_price": decimal_str(self.unit_price),
            "discount_amount": decimal_str(self.discount_amount),
            "discount_percentage": decimal_str(self.discount_percentage),
            "cost_price": decimal_str(self.cost_price),
            "cost_total": decimal_str(self.cost_total),
            "line_total": decimal_str(self.line_total),
            "profit_amount": decimal_str(self.profit_amount),
        }


class PaymentRecord(db.Model):
    """
    One payment event against a sale. Append-only.

    Sale.amount_paid is recomputed as the sum of these rows on every
    addition, never incremented.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.Index("ix_payment_records_sale_date", "sale_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    # cash, card, bank_transfer, cheque, other
    method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="payments")

    @property
    def display_method(self) -> str:
        return self.method.replace("_", " ").capitalize()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "user_id": self.user_id,
            "amount": decimal_str(self.amount),
            "method": self.method,
            "display_method": self.display_method,
            "reference": self.reference,
            "notes": self.notes,
            "payment_date": to_utc_z(self.payment_date),
        }
