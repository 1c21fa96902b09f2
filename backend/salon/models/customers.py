from __future__ import annotations

from ..extensions import db
from ..money import money_json
from salon.time_utils import to_utc_z


class Customer(db.Model):
    """
    Salon customer with denormalized visit aggregates.

    sale_count, loyalty_points, total_spent and last_sale_at are written only
    by customer_stats_service inside the transaction of the sale operation
    that caused the change. Other code paths read them but never write them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "full_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    # Birthday (year not collected)
    birth_month = db.Column(db.Integer, nullable=True)
    birth_day = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Denormalized aggregates (delta-maintained)
    sale_count = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_spent = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    last_sale_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.full_name!r} sale_count={self.sale_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "email": self.email,
            "birth_month": self.birth_month,
            "birth_day": self.birth_day,
            "is_active": self.is_active,
            "sale_count": self.sale_count,
            "loyalty_points": self.loyalty_points,
            "total_spent": money_json(self.total_spent),
            "last_sale_at": to_utc_z(self.last_sale_at) if self.last_sale_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
