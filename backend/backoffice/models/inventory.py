from __future__ import annotations

from ..extensions import db
from backoffice.money_utils import decimal_str, to_decimal
from backoffice.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    IMMUTABLE: rows are never updated or deleted; they are the audit trail
    answering "why did stock change".

    INVARIANTS:
    - stock_after = stock_before + quantity
    - stock_after equals Product.stock_quantity at the moment the row is written
    - quantity is never zero (zero-delta changes write no row)

    reference_type holds a StockReferenceType value (see ledger_service);
    reference_id points at the sale/purchase that caused the movement, if any.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_company_product", "company_id", "product_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    # in, out, adjustment
    type = db.Column(db.String(16), nullable=False, index=True)

    # Signed delta actually applied (after clamping)
    quantity = db.Column(db.Numeric(15, 6), nullable=False)
    stock_before = db.Column(db.Numeric(15, 6), nullable=False)
    stock_after = db.Column(db.Numeric(15, 6), nullable=False)

    reference_type = db.Column(db.String(32), nullable=False, index=True)
    reference_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))
    unit = db.relationship("Unit")

    @property
    def formatted_quantity(self) -> str:
        from backoffice.services.unit_service import strip_zeros
        qty = to_decimal(self.quantity)
        sign = "+" if qty > 0 else ""
        return f"{sign}{strip_zeros(qty)}"

    @property
    def display_movement(self) -> str:
        symbol = self.unit.symbol if self.unit else "units"
        return f"{self.formatted_quantity} {symbol}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "unit_id": self.unit_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity": decimal_str(self.quantity),
            "stock_before": decimal_str(self.stock_before),
            "stock_after": decimal_str(self.stock_after),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "display_movement": self.display_movement,
            "created_at": to_utc_z(self.created_at),
        }
