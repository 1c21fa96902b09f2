from __future__ import annotations

from ..extensions import db
from ..money import money_json
from salon.time_utils import to_utc_z


# Discount types applied by the engine itself (one active rule row each)
TYPE_SIXTH_VISIT = "SIXTH_VISIT"
TYPE_BIRTHDAY_MONTH = "BIRTHDAY_MONTH"
TYPE_SERVICE_COMBO = "SERVICE_COMBO"
TYPE_BRING_OWN_PRODUCT = "BRING_OWN_PRODUCT"
TYPE_MANUAL_DISCOUNT = "MANUAL_DISCOUNT"

SYSTEM_DISCOUNT_TYPES = (
    TYPE_SIXTH_VISIT,
    TYPE_BIRTHDAY_MONTH,
    TYPE_SERVICE_COMBO,
    TYPE_BRING_OWN_PRODUCT,
    TYPE_MANUAL_DISCOUNT,
)

# Operator-defined rule types (evaluated by the promotional pass)
TYPE_PROMOTIONAL = "PROMOTIONAL"
TYPE_SEASONAL = "SEASONAL"
TYPE_LOYALTY_POINTS = "LOYALTY_POINTS"

PROMOTIONAL_DISCOUNT_TYPES = (TYPE_PROMOTIONAL, TYPE_SEASONAL, TYPE_LOYALTY_POINTS)


discount_rule_services = db.Table(
    "discount_rule_services",
    db.Column("discount_rule_id", db.Integer, db.ForeignKey("discount_rules.id", ondelete="CASCADE"), primary_key=True),
    db.Column("service_id", db.Integer, db.ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
)


class DiscountRule(db.Model):
    """
    Discount rule definition.

    System types (SIXTH_VISIT, BIRTHDAY_MONTH, ...) get exactly one active row
    each, created on first use. Operator rules (PROMOTIONAL, SEASONAL,
    LOYALTY_POINTS) carry value/percentage, optional min purchase, max cap,
    validity window and service scoping.

    Rules are never hard-deleted: past SaleDiscount rows reference them.
    Deleting renames the rule with a _deleted_<ts> suffix and deactivates it.
    """
    __tablename__ = "discount_rules"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_discount_rules_name"),
        db.Index("ix_discount_rules_type_active", "type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Percentage points when is_percentage, otherwise a flat amount
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_percentage = db.Column(db.Boolean, nullable=False, default=True)

    min_amount = db.Column(db.Numeric(12, 2), nullable=True)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    apply_to_all_services = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    services = db.relationship("Service", secondary=discount_rule_services, lazy="selectin")

    @property
    def is_system(self) -> bool:
        return self.type in SYSTEM_DISCOUNT_TYPES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "value": money_json(self.value),
            "is_percentage": self.is_percentage,
            "min_amount": money_json(self.min_amount),
            "max_discount": money_json(self.max_discount),
            "start_date": to_utc_z(self.start_date) if self.start_date else None,
            "end_date": to_utc_z(self.end_date) if self.end_date else None,
            "apply_to_all_services": self.apply_to_all_services,
            "service_ids": sorted(s.id for s in self.services),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


# At most one active rule per system type; ensure_rule relies on this to
# resolve concurrent first-use inserts.
db.Index(
    "uq_discount_rules_active_system_type",
    DiscountRule.type,
    unique=True,
    sqlite_where=db.and_(DiscountRule.is_active.is_(True), DiscountRule.type.in_(SYSTEM_DISCOUNT_TYPES)),
    postgresql_where=db.and_(DiscountRule.is_active.is_(True), DiscountRule.type.in_(SYSTEM_DISCOUNT_TYPES)),
)


class CustomerDiscountUsage(db.Model):
    """
    Append-only record of a discount granted to a customer.

    Used for "already used this month" eligibility (birthday discount).
    Rows are removed only when the sale that produced them is deleted.
    """
    __tablename__ = "customer_discount_usages"
    __table_args__ = (
        db.Index("ix_discount_usages_customer_used", "customer_id", "used_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    discount_rule_id = db.Column(db.Integer, db.ForeignKey("discount_rules.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("discount_usages", lazy=True))
    discount_rule = db.relationship("DiscountRule")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "discount_rule_id": self.discount_rule_id,
            "sale_id": self.sale_id,
            "discount_amount": money_json(self.discount_amount),
            "used_at": to_utc_z(self.used_at),
        }
