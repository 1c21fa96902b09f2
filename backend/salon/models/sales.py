from __future__ import annotations

from ..extensions import db
from ..money import money_json
from salon.time_utils import to_utc_z


class Sale(db.Model):
    """
    One customer visit: service lines, product lines, discounts, payments
    and staff attribution, created/edited/deleted as a single unit.

    INVARIANTS:
    - final_amount == max(0, total_amount - discount_amount + manual_increment)
    - sum(payments.amount) == final_amount (tolerance 0.01)
    - loyalty_points_earned == floor(final_amount / LOYALTY_POINT_UNIT)
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_customer_date", "customer_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Money (currency units, 2dp)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    manual_increment = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)

    # Operator comments only; discount/increment audit lives in sale_annotations
    notes = db.Column(db.Text, nullable=True)

    is_completed = db.Column(db.Boolean, nullable=False, default=False)

    # Legacy single tender (first payment row's method)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    birthday_discount_applied = db.Column(db.Boolean, nullable=False, default=False)
    own_product_discount_applied = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} customer_id={self.customer_id} final={self.final_amount}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_date": to_utc_z(self.sale_date),
            "total_amount": money_json(self.total_amount),
            "discount_amount": money_json(self.discount_amount),
            "manual_increment": money_json(self.manual_increment),
            "final_amount": money_json(self.final_amount),
            "loyalty_points_earned": self.loyalty_points_earned,
            "notes": self.notes,
            "is_completed": self.is_completed,
            "payment_method": self.payment_method,
            "birthday_discount_applied": self.birthday_discount_applied,
            "own_product_discount_applied": self.own_product_discount_applied,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleServiceLine(db.Model):
    """Service line on a sale (replaced as a set on edit, never patched)."""
    __tablename__ = "sale_services"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    is_child = db.Column(db.Boolean, nullable=False, default=False)
    is_combined = db.Column(db.Boolean, nullable=False, default=False)
    add_shampoo = db.Column(db.Boolean, nullable=False, default=False)

    sale = db.relationship("Sale", backref=db.backref("service_lines", lazy=True, order_by="SaleServiceLine.id"))
    service = db.relationship("Service")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "service_id": self.service_id,
            "service": self.service.to_dict() if self.service else None,
            "quantity": self.quantity,
            "unit_price": money_json(self.unit_price),
            "total_price": money_json(self.total_price),
            "is_child": self.is_child,
            "is_combined": self.is_combined,
            "add_shampoo": self.add_shampoo,
        }


class SaleProductLine(db.Model):
    """Retail product line; each unit is reserved from Product.quantity."""
    __tablename__ = "sale_products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    sale = db.relationship("Sale", backref=db.backref("product_lines", lazy=True, order_by="SaleProductLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product": self.product.to_dict() if self.product else None,
            "quantity": self.quantity,
            "unit_price": money_json(self.unit_price),
            "total_price": money_json(self.total_price),
        }


class SaleDiscount(db.Model):
    """Concrete discount amount applied to a sale under a DiscountRule."""
    __tablename__ = "sale_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    discount_rule_id = db.Column(db.Integer, db.ForeignKey("discount_rules.id"), nullable=False, index=True)

    # Evaluation order within the sale (sixth-visit, birthday, combo, own product, manual, promotional)
    position = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("discounts", lazy=True, order_by="SaleDiscount.position"))
    discount_rule = db.relationship("DiscountRule")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "discount_rule_id": self.discount_rule_id,
            "discount_rule": self.discount_rule.to_dict() if self.discount_rule else None,
            "type": self.discount_rule.type if self.discount_rule else None,
            "position": self.position,
            "discount_amount": money_json(self.discount_amount),
            "description": self.description,
        }


class SalePayment(db.Model):
    """
    One tender on a sale.

    METHODS: CASH, MOBILE_MONEY, MOMO, BANK_CARD, BANK_TRANSFER
    (anything else is normalized to CASH by payment_service).
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method": self.payment_method,
            "amount": money_json(self.amount),
            "created_at": to_utc_z(self.created_at),
        }


class SaleStaff(db.Model):
    """Staff attribution: either a system staff_id or a free-text custom_name."""
    __tablename__ = "sale_staff"
    __table_args__ = (
        db.CheckConstraint(
            "(staff_id IS NOT NULL AND custom_name IS NULL) OR (staff_id IS NULL AND custom_name IS NOT NULL)",
            name="ck_sale_staff_one_of",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)
    custom_name = db.Column(db.String(255), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("staff", lazy=True, order_by="SaleStaff.id"))
    staff = db.relationship("Staff")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "staff_id": self.staff_id,
            "staff": {"id": self.staff.id, "name": self.staff.name} if self.staff else None,
            "custom_name": self.custom_name,
        }


class SaleAnnotation(db.Model):
    """
    Structured audit trail for discounts and manual adjustments on a sale.

    KINDS:
    - DISCOUNT: an automatic or promotional discount (discount_type set)
    - MANUAL_DISCOUNT: operator discount with reason
    - MANUAL_INCREMENT: operator surcharge with reason
    """
    __tablename__ = "sale_annotations"
    __table_args__ = (
        db.Index("ix_sale_annotations_sale_kind", "sale_id", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    kind = db.Column(db.String(32), nullable=False)
    discount_type = db.Column(db.String(32), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    label = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("annotations", lazy=True, order_by="SaleAnnotation.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "kind": self.kind,
            "discount_type": self.discount_type,
            "amount": money_json(self.amount),
            "reason": self.reason,
            "label": self.label,
            "created_at": to_utc_z(self.created_at),
        }
