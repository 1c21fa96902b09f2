"""
Customer statistics reconciler.

The visit aggregates on Customer (sale_count, loyalty_points, total_spent,
last_sale_at) are kept by applying signed deltas inside the transaction of
the sale operation that caused them. Nothing else writes these columns.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Customer, Sale
from ..money import to_money, floor_div, ZERO
from .concurrency import lock_for_update
from .exceptions import NotFoundError


DEFAULT_LOYALTY_POINT_UNIT = 1000

# Sentinel: leave last_sale_at untouched
UNCHANGED = object()


@dataclass(frozen=True)
class StatsDelta:
    visit_count: int = 0
    points: int = 0
    spend: Decimal = ZERO
    # UNCHANGED keeps the current value; None clears it
    last_sale_at: object = UNCHANGED


def loyalty_points_for(final_amount) -> int:
    """floor(final_amount / LOYALTY_POINT_UNIT); never negative."""
    unit = int(current_app.config.get("LOYALTY_POINT_UNIT", DEFAULT_LOYALTY_POINT_UNIT))
    amount = to_money(final_amount)
    if amount <= ZERO:
        return 0
    return floor_div(amount, unit)


def apply_delta(customer_id: int, delta: StatsDelta) -> Customer:
    """
    Apply a StatsDelta to the customer row, clamping every aggregate at 0.

    The customer row is read FOR UPDATE; the caller commits.
    """
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    customer.sale_count = max(0, (customer.sale_count or 0) + delta.visit_count)
    customer.loyalty_points = max(0, (customer.loyalty_points or 0) + delta.points)

    spent = to_money(customer.total_spent) + to_money(delta.spend)
    customer.total_spent = spent if spent > ZERO else ZERO

    if delta.last_sale_at is not UNCHANGED:
        customer.last_sale_at = delta.last_sale_at

    db.session.flush()
    return customer


def most_recent_sale_date(customer_id: int, exclude_sale_id: int | None = None) -> datetime | None:
    q = db.session.query(Sale.sale_date).filter(Sale.customer_id == customer_id)
    if exclude_sale_id is not None:
        q = q.filter(Sale.id != exclude_sale_id)
    row = q.order_by(Sale.sale_date.desc(), Sale.id.desc()).first()
    return row[0] if row else None
