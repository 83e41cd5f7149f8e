from __future__ import annotations

from ..extensions import db
from backoffice.money_utils import ZERO, decimal_str
from backoffice.time_utils import to_utc_z


PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_CANCELLED = "cancelled"


class Purchase(db.Model):
    """
    Inbound stock document from a supplier.

    LIFECYCLE: completed -> cancelled (one-way). Cancelling reverses every
    item's quantity from stock and fails as a whole if any reversal would
    take a product below zero.

    Totals follow the same rule as sales:
    total_amount = subtotal - discount_amount + tax_amount
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("company_id", "purchase_number", name="uq_purchases_company_number"),
        db.Index("ix_purchases_company_status_date", "company_id", "status", "purchase_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    # Human-readable number (e.g., "PUR-20261017-0001")
    purchase_number = db.Column(db.String(32), nullable=False)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_COMPLETED, index=True)
    notes = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    company = db.relationship("Company", backref=db.backref("purchases", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    items = db.relationship("PurchaseItem", back_populates="purchase", lazy=True, order_by="PurchaseItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} number={self.purchase_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "user_id": self.user_id,
            "purchase_number": self.purchase_number,
            "purchase_date": to_utc_z(self.purchase_date),
            "subtotal": decimal_str(self.subtotal),
            "discount_amount": decimal_str(self.discount_amount),
            "discount_percentage": decimal_str(self.discount_percentage),
            "tax_amount": decimal_str(self.tax_amount),
            "total_amount": decimal_str(self.total_amount),
            "status": self.status,
            "notes": self.notes,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Numeric(15, 6), nullable=False)
    unit_cost = db.Column(db.Numeric(12, 4), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=ZERO)

    # quantity * unit_cost, before discount
    cost_total = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    # cost_total - discount
    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")
    unit = db.relationship("Unit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": decimal_str(self.quantity),
            "unit_cost": decimal_str(self.unit_cost),
            "discount_amount": decimal_str(self.discount_amount),
            "discount_percentage": decimal_str(self.discount_percentage),
            "cost_total": decimal_str(self.cost_total),
            "line_total": decimal_str(self.line_total),
        }
