from __future__ import annotations

from ..extensions import db
from salon.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only record of product stock changes made by sales.

    TYPES:
    - SALE: units reserved for a sale line (negative delta)
    - SALE_RELEASE: units returned when a sale is edited or deleted (positive delta)

    Product.quantity stays the authoritative on-hand figure; movements exist
    for audit and for reconciling that figure.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # Not a foreign key: movements outlive deleted sales
    sale_id = db.Column(db.Integer, nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "quantity_after": self.quantity_after,
            "sale_id": self.sale_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
