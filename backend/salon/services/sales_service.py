"""
Sales Service - sale transaction orchestrator

A sale (one customer visit) is created, edited and deleted as one unit of
work: line items, discounts, payments, staff attribution, product stock and
the customer's visit aggregates are written in the same transaction, which
either commits as a whole or rolls back as a whole (run_in_transaction).

LIFECYCLE:
- create_sale: resolve prices, evaluate every discount, allocate payments,
  reserve stock, +1 visit and +points/+spend on the customer
- update_sale: replace the sub-collections that were sent, keep the
  automatic discounts granted at creation, apply signed spend/points deltas
  against the original sale, never touch the visit count
- delete_sale: release stock, delete every child row, -1 visit, reverse
  spend/points (clamped at 0), recompute last_sale_at from remaining sales
- complete_sale: flag flip only
"""
from __future__ import annotations

from datetime import datetime, time, timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import (
    Customer,
    CustomerDiscountUsage,
    Product,
    Sale,
    SaleAnnotation,
    SaleDiscount,
    SalePayment,
    SaleProductLine,
    SaleServiceLine,
    SaleStaff,
    Service,
    Staff,
)
from ..models.discounts import TYPE_BIRTHDAY_MONTH, TYPE_BRING_OWN_PRODUCT, TYPE_MANUAL_DISCOUNT
from ..money import to_money, ZERO
from salon.time_utils import parse_iso_date, utcnow
from . import customer_stats_service, discount_rules_service, discount_service, inventory_service, payment_service
from .concurrency import lock_for_update, run_in_transaction
from .customer_stats_service import StatsDelta
from .discount_service import CustomerSnapshot, DiscountCalculation, PricedServiceLine
from .exceptions import InactiveError, NotFoundError, PaymentMismatchError, SaleValidationError
from .pricing_service import line_total, resolve_product_unit_price, resolve_service_unit_price
from .sale_payload import ManualAdjustment, SalePayload, normalize_sale_payload


ANNOTATION_DISCOUNT = "DISCOUNT"
ANNOTATION_MANUAL_DISCOUNT = "MANUAL_DISCOUNT"
ANNOTATION_MANUAL_INCREMENT = "MANUAL_INCREMENT"


def final_amount_for(total_amount: Decimal, discount_amount: Decimal, manual_increment: Decimal) -> Decimal:
    """max(0, subtotal - discounts + manual increment)"""
    final = to_money(total_amount) - to_money(discount_amount) + to_money(manual_increment)
    return final if final > ZERO else ZERO


def _currency() -> str:
    return current_app.config.get("SALON_CURRENCY", "RWF")


# =============================================================================
# LOOKUPS
# =============================================================================

def _load_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    if not customer.is_active:
        raise InactiveError("Customer is inactive", details={"customer_id": customer_id})
    return customer


def _load_catalog(model, ids, label: str, *, allow_inactive: frozenset = frozenset()) -> dict:
    """
    Fetch catalog rows by id. Any missing id -> NotFoundError; any inactive id
    -> InactiveError unless it is in allow_inactive (already on the sale).
    """
    wanted = sorted(set(ids))
    rows = db.session.query(model).filter(model.id.in_(wanted)).all() if wanted else []
    by_id = {row.id: row for row in rows}

    key = f"{label.lower()}_ids"
    missing = [i for i in wanted if i not in by_id]
    if missing:
        raise NotFoundError(f"One or more {label.lower()}s not found", details={key: missing})

    inactive = [i for i in wanted if not by_id[i].is_active and i not in allow_inactive]
    if inactive:
        raise InactiveError(f"One or more {label.lower()}s are inactive", details={key: inactive})
    return by_id


def _load_staff(staff_ids: list[int]) -> None:
    if not staff_ids:
        return
    found = {row[0] for row in db.session.query(Staff.id).filter(Staff.id.in_(staff_ids)).all()}
    missing = [i for i in staff_ids if i not in found]
    if missing:
        raise NotFoundError("One or more staff members not found", details={"staff_ids": missing})


def _load_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


# =============================================================================
# LINE ITEMS
# =============================================================================

def _build_service_lines(sale_id, selections, services: dict) -> list[SaleServiceLine]:
    lines = []
    for sel in selections:
        service = services[sel.service_id]
        unit = resolve_service_unit_price(service, is_child=sel.is_child, add_shampoo=sel.add_shampoo)
        lines.append(SaleServiceLine(
            sale_id=sale_id,
            service_id=service.id,
            quantity=sel.quantity,
            unit_price=unit,
            total_price=line_total(unit, sel.quantity),
            is_child=sel.is_child,
            is_combined=sel.add_shampoo,
            add_shampoo=sel.add_shampoo,
        ))
    return lines


def _build_product_lines(sale_id, selections, products: dict) -> list[SaleProductLine]:
    lines = []
    for sel in selections:
        product = products[sel.product_id]
        unit = resolve_product_unit_price(product)
        lines.append(SaleProductLine(
            sale_id=sale_id,
            product_id=product.id,
            quantity=sel.quantity,
            unit_price=unit,
            total_price=line_total(unit, sel.quantity),
        ))
    return lines


def _priced_for_discounts(lines: list[SaleServiceLine], services: dict) -> list[PricedServiceLine]:
    return [
        PricedServiceLine(service_id=l.service_id, name=services[l.service_id].name, total_price=to_money(l.total_price))
        for l in lines
    ]


def _subtotal(service_lines, product_lines) -> Decimal:
    total = sum((to_money(l.total_price) for l in service_lines), ZERO)
    total += sum((to_money(l.total_price) for l in product_lines), ZERO)
    return to_money(total)


def _reserve_lines(sale_id: int, product_lines: list[SaleProductLine]) -> None:
    # Lock products in id order
    for line in sorted(product_lines, key=lambda l: l.product_id):
        inventory_service.reserve(line.product_id, line.quantity, sale_id=sale_id, note=f"Sale {sale_id}")


def _clear(sale: Sale, attr: str) -> None:
    """Delete every row of a child collection and drop the stale collection."""
    for row in list(getattr(sale, attr)):
        db.session.delete(row)
    db.session.flush()
    db.session.expire(sale, [attr])


# =============================================================================
# DISCOUNTS / ANNOTATIONS / PAYMENTS / STAFF
# =============================================================================

def _write_discount(sale: Sale, calc: DiscountCalculation, position: int, *, used_at: datetime, reason: str | None = None) -> None:
    rule_id = calc.rule_id or discount_rules_service.ensure_rule(calc.type).id
    db.session.add(SaleDiscount(
        sale_id=sale.id,
        discount_rule_id=rule_id,
        position=position,
        discount_amount=calc.amount,
        description=(calc.description or "")[:255],
    ))
    db.session.add(CustomerDiscountUsage(
        customer_id=sale.customer_id,
        discount_rule_id=rule_id,
        sale_id=sale.id,
        discount_amount=calc.amount,
        used_at=used_at,
    ))

    manual = calc.type == TYPE_MANUAL_DISCOUNT
    db.session.add(SaleAnnotation(
        sale_id=sale.id,
        kind=ANNOTATION_MANUAL_DISCOUNT if manual else ANNOTATION_DISCOUNT,
        discount_type=calc.type,
        amount=calc.amount,
        reason=reason[:255] if reason else None,
        label=f"{calc.description} (-{calc.amount} {_currency()})"[:255],
    ))


def _write_increment(sale: Sale, increment: ManualAdjustment) -> None:
    db.session.add(SaleAnnotation(
        sale_id=sale.id,
        kind=ANNOTATION_MANUAL_INCREMENT,
        amount=increment.amount,
        reason=increment.reason[:255],
        label=f"Manual Increment: {increment.reason} (+{increment.amount} {_currency()})"[:255],
    ))


def _write_payments(sale: Sale, allocations) -> None:
    for allocation in allocations:
        db.session.add(SalePayment(
            sale_id=sale.id,
            payment_method=allocation.payment_method,
            amount=allocation.amount,
        ))
    sale.payment_method = payment_service.primary_method(allocations, sale.payment_method)


def _write_staff(sale: Sale, staff_ids: list[int] | None, custom_names: list[str] | None) -> None:
    for staff_id in staff_ids or []:
        db.session.add(SaleStaff(sale_id=sale.id, staff_id=staff_id))
    for name in custom_names or []:
        db.session.add(SaleStaff(sale_id=sale.id, custom_name=name[:255]))


def _drop_manual_discount(sale: Sale) -> None:
    """Remove the manual discount row, its usage record and annotation."""
    manual_rule_ids = [
        row.discount_rule_id for row in sale.discounts
        if row.discount_rule and row.discount_rule.type == TYPE_MANUAL_DISCOUNT
    ]
    for row in list(sale.discounts):
        if row.discount_rule_id in manual_rule_ids:
            db.session.delete(row)
    if manual_rule_ids:
        (
            db.session.query(CustomerDiscountUsage)
            .filter(
                CustomerDiscountUsage.sale_id == sale.id,
                CustomerDiscountUsage.discount_rule_id.in_(manual_rule_ids),
            )
            .delete(synchronize_session=False)
        )
    for row in list(sale.annotations):
        if row.kind == ANNOTATION_MANUAL_DISCOUNT:
            db.session.delete(row)
    db.session.flush()
    db.session.expire(sale, ["discounts", "annotations"])


def _drop_increment(sale: Sale) -> None:
    for row in list(sale.annotations):
        if row.kind == ANNOTATION_MANUAL_INCREMENT:
            db.session.delete(row)
    db.session.flush()
    db.session.expire(sale, ["annotations"])


# =============================================================================
# CREATE
# =============================================================================

def _create_sale_locked(payload: SalePayload, now: datetime) -> Sale:
    customer = _load_customer(payload.customer_id)
    snapshot = CustomerSnapshot.from_customer(customer)

    service_selections = payload.services or []
    product_selections = payload.products or []
    services = _load_catalog(Service, [s.service_id for s in service_selections], "Service")
    products = _load_catalog(Product, [p.product_id for p in product_selections], "Product")
    _load_staff(payload.staff_ids or [])

    service_lines = _build_service_lines(None, service_selections, services)
    product_lines = _build_product_lines(None, product_selections, products)
    subtotal = _subtotal(service_lines, product_lines)

    discounts = discount_service.calculate_discounts(
        snapshot,
        _priced_for_discounts(service_lines, services),
        subtotal,
        bring_own_product=payload.bring_own_product,
        manual_discount=payload.manual_discount,
        now=now,
    )
    discount_amount = discount_service.total_discount(discounts)

    increment = payload.manual_increment if payload.manual_increment and payload.manual_increment.applies else None
    increment_amount = increment.amount if increment else ZERO

    final_amount = final_amount_for(subtotal, discount_amount, increment_amount)
    allocations = payment_service.allocate_payments(
        payload.payments, final_amount, legacy_method=payload.payment_method,
    )
    points = customer_stats_service.loyalty_points_for(final_amount)

    discount_types = {d.type for d in discounts}
    sale = Sale(
        customer_id=customer.id,
        sale_date=now,
        total_amount=subtotal,
        discount_amount=discount_amount,
        manual_increment=increment_amount,
        final_amount=final_amount,
        loyalty_points_earned=points,
        notes=payload.notes,
        is_completed=bool(payload.is_completed),
        birthday_discount_applied=TYPE_BIRTHDAY_MONTH in discount_types,
        own_product_discount_applied=TYPE_BRING_OWN_PRODUCT in discount_types,
        created_by=payload.created_by,
    )
    db.session.add(sale)
    # Sale row must exist before rule upserts open a SAVEPOINT
    db.session.flush()

    for line in service_lines + product_lines:
        line.sale_id = sale.id
        db.session.add(line)

    for index, calc in enumerate(discounts):
        reason = payload.manual_discount.reason if calc.type == TYPE_MANUAL_DISCOUNT else None
        _write_discount(sale, calc, discount_service.discount_position(calc, index), used_at=now, reason=reason)

    if increment:
        _write_increment(sale, increment)

    _write_payments(sale, allocations)
    _write_staff(sale, payload.staff_ids, payload.custom_staff_names)
    db.session.flush()

    _reserve_lines(sale.id, product_lines)

    customer_stats_service.apply_delta(customer.id, StatsDelta(
        visit_count=1,
        points=points,
        spend=final_amount,
        last_sale_at=now,
    ))
    return sale


def create_sale(data: dict, *, now: datetime | None = None) -> Sale:
    """
    Create a sale and everything attached to it in one transaction.

    Raises NotFoundError, InactiveError, SaleValidationError,
    PaymentMismatchError or OutOfStockError; nothing is written on error.
    """
    payload = normalize_sale_payload(data)
    sale = run_in_transaction(lambda: _create_sale_locked(payload, now or utcnow()))
    current_app.logger.info(
        "Sale %s created for customer %s: total=%s discount=%s final=%s",
        sale.id, sale.customer_id, sale.total_amount, sale.discount_amount, sale.final_amount,
    )
    return sale


# =============================================================================
# UPDATE
# =============================================================================

def _update_sale_locked(sale_id: int, payload: SalePayload) -> Sale:
    sale = _load_sale(sale_id)
    original_final = to_money(sale.final_amount)
    original_points = sale.loyalty_points_earned or 0

    # Services: full replace when supplied
    if payload.services is not None:
        attached = frozenset(l.service_id for l in sale.service_lines)
        services = _load_catalog(
            Service, [s.service_id for s in payload.services], "Service", allow_inactive=attached,
        )
        _clear(sale, "service_lines")
        for line in _build_service_lines(sale.id, payload.services, services):
            db.session.add(line)

    # Products: release the whole prior set, then reserve the new one
    if payload.products is not None:
        attached = frozenset(l.product_id for l in sale.product_lines)
        products = _load_catalog(
            Product, [p.product_id for p in payload.products], "Product", allow_inactive=attached,
        )
        inventory_service.release_sale_products(sale, note=f"Sale {sale.id} edited")
        _clear(sale, "product_lines")
        new_lines = _build_product_lines(sale.id, payload.products, products)
        for line in new_lines:
            db.session.add(line)
        db.session.flush()
        _reserve_lines(sale.id, new_lines)

    db.session.flush()
    db.session.expire(sale, ["service_lines", "product_lines"])
    if not sale.service_lines and not sale.product_lines:
        raise SaleValidationError("A sale needs at least one service or product")

    if payload.staff_supplied:
        _load_staff(payload.staff_ids or [])
        _clear(sale, "staff")
        _write_staff(sale, payload.staff_ids, payload.custom_staff_names)

    # Manual discount: a supplied amount with a non-blank reason replaces the
    # current one (amount 0 removes it); a blank reason leaves it as is.
    manual = payload.manual_discount
    if manual is not None and manual.reason:
        _drop_manual_discount(sale)
        if manual.applies:
            calc = discount_service.manual_discount_calculation(manual)
            _write_discount(
                sale, calc, discount_service.discount_position(calc, 0), used_at=utcnow(), reason=manual.reason,
            )
            db.session.flush()
            db.session.expire(sale, ["discounts", "annotations"])

    increment = payload.manual_increment
    if increment is not None and increment.reason:
        _drop_increment(sale)
        sale.manual_increment = increment.amount if increment.applies else ZERO
        if increment.applies:
            _write_increment(sale, increment)

    # Automatic discounts granted at creation are kept as they are
    kept = discount_service.preserved_automatic_discounts(sale)
    current_manual = discount_service.existing_manual_discount(sale)
    discounts = kept + ([current_manual] if current_manual else [])

    subtotal = _subtotal(sale.service_lines, sale.product_lines)
    discount_amount = discount_service.total_discount(discounts)
    final_amount = final_amount_for(subtotal, discount_amount, sale.manual_increment)

    sale.total_amount = subtotal
    sale.discount_amount = discount_amount
    sale.final_amount = final_amount

    # Payments: replace when supplied; otherwise a single legacy payment follows the new total
    if payload.payments is not None:
        allocations = payment_service.allocate_payments(
            payload.payments, final_amount, legacy_method=payload.payment_method or sale.payment_method,
        )
        _clear(sale, "payments")
        _write_payments(sale, allocations)
    elif final_amount != original_final:
        existing = list(sale.payments)
        if len(existing) > 1:
            raise PaymentMismatchError(
                "Final amount changed on a split-payment sale; send payments that add up to the new amount",
                details={
                    "payments_total": str(payment_service.payments_total(existing)),
                    "final_amount": str(final_amount),
                },
            )
        method = payload.payment_method or (existing[0].payment_method if existing else sale.payment_method)
        allocations = payment_service.allocate_payments(None, final_amount, legacy_method=method)
        _clear(sale, "payments")
        _write_payments(sale, allocations)

    points = customer_stats_service.loyalty_points_for(final_amount)
    sale.loyalty_points_earned = points

    if payload.notes_supplied:
        sale.notes = payload.notes
    if payload.is_completed is not None:
        sale.is_completed = payload.is_completed

    db.session.flush()

    # Signed deltas against the sale as it was; visit count unchanged
    customer_stats_service.apply_delta(sale.customer_id, StatsDelta(
        points=points - original_points,
        spend=final_amount - original_final,
    ))
    return sale


def update_sale(sale_id: int, data: dict) -> Sale:
    """
    Edit a sale. Collections absent from data are left as they are.

    Automatic discounts are not re-evaluated (see
    discount_service.preserved_automatic_discounts).
    """
    payload = normalize_sale_payload(data, for_update=True)
    if payload.ignored:
        current_app.logger.info("Sale %s update ignored fields: %s", sale_id, payload.ignored)

    sale = run_in_transaction(lambda: _update_sale_locked(sale_id, payload))
    current_app.logger.info(
        "Sale %s updated: total=%s discount=%s final=%s",
        sale.id, sale.total_amount, sale.discount_amount, sale.final_amount,
    )
    return sale


# =============================================================================
# DELETE / COMPLETE
# =============================================================================

def _delete_sale_locked(sale_id: int) -> dict:
    sale = _load_sale(sale_id)
    customer_id = sale.customer_id
    final_amount = to_money(sale.final_amount)
    points = sale.loyalty_points_earned or 0

    released = inventory_service.release_sale_products(sale, note=f"Sale {sale.id} deleted")

    db.session.query(CustomerDiscountUsage).filter_by(sale_id=sale.id).delete(synchronize_session=False)
    for attr in ("annotations", "discounts", "payments", "staff", "service_lines", "product_lines"):
        _clear(sale, attr)
    db.session.delete(sale)
    db.session.flush()

    customer_stats_service.apply_delta(customer_id, StatsDelta(
        visit_count=-1,
        points=-points,
        spend=-final_amount,
        last_sale_at=customer_stats_service.most_recent_sale_date(customer_id, exclude_sale_id=sale_id),
    ))
    return {"id": sale_id, "customer_id": customer_id, "released_units": released}


def delete_sale(sale_id: int) -> dict:
    """Void a sale: restore stock, remove all child rows, reverse customer aggregates."""
    result = run_in_transaction(lambda: _delete_sale_locked(sale_id))
    current_app.logger.info(
        "Sale %s deleted for customer %s (%s units restocked)",
        result["id"], result["customer_id"], result["released_units"],
    )
    return result


def complete_sale(sale_id: int) -> Sale:
    """Mark a sale completed. No amounts are recomputed."""
    def _op():
        sale = _load_sale(sale_id)
        sale.is_completed = True
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Sale %s completed", sale.id)
    return sale


# =============================================================================
# READS
# =============================================================================

def serialize_sale(sale: Sale) -> dict:
    """Fully hydrated sale: lines, discounts with rule detail, payments, staff, customer."""
    data = sale.to_dict()
    data["customer"] = sale.customer.to_dict() if sale.customer else None
    data["services"] = [l.to_dict() for l in sale.service_lines]
    data["products"] = [l.to_dict() for l in sale.product_lines]
    data["discounts"] = [d.to_dict() for d in sale.discounts]
    data["payments"] = [p.to_dict() for p in sale.payments]
    data["staff"] = [s.to_dict() for s in sale.staff]
    data["annotations"] = [a.to_dict() for a in sale.annotations]
    return data


def get_sale(sale_id: int) -> dict:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return serialize_sale(sale)


def _paginate(base_query, page, per_page, default_per_page: int) -> dict:
    page = max(1, int(page or 1))
    per_page = max(1, min(100, int(per_page or default_per_page)))

    total = base_query.count()
    sales = (
        base_query.order_by(Sale.sale_date.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    return {
        "items": [serialize_sale(s) for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
        },
    }


def list_customer_sales(customer_id: int, page: int = 1, per_page: int = 20) -> dict:
    """A page of one customer's sales, newest first."""
    if not db.session.query(Customer.id).filter_by(id=customer_id).first():
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})

    base_query = db.session.query(Sale).filter(Sale.customer_id == customer_id)
    return _paginate(base_query, page, per_page, 20)


def _day(value, label: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise SaleValidationError(f"{label} must be an ISO-8601 date", details={label: value})


def list_sales(filters: dict | None = None, page: int = 1, per_page: int = 10) -> dict:
    """
    A page of all sales, newest first.

    Filters (all optional):
    - customer_id: one customer's sales
    - staff_id: sales attributed to this staff member
    - start_date / end_date: whole days, inclusive; start_date alone means that one day
    - search: case-insensitive match on the customer's name
    """
    filters = filters or {}
    base_query = db.session.query(Sale)

    customer_id = filters.get("customer_id")
    if customer_id is not None:
        base_query = base_query.filter(Sale.customer_id == customer_id)

    staff_id = filters.get("staff_id")
    if staff_id is not None:
        attributed = db.session.query(SaleStaff.sale_id).filter(SaleStaff.staff_id == staff_id)
        base_query = base_query.filter(Sale.id.in_(attributed))

    search = (filters.get("search") or "").strip()
    if search:
        base_query = base_query.join(Customer, Sale.customer_id == Customer.id).filter(
            Customer.full_name.icontains(search, autoescape=True)
        )

    start = _day(filters.get("start_date"), "start_date")
    end = _day(filters.get("end_date"), "end_date")
    if start and not end:
        end = start
    if start and end and end < start:
        raise SaleValidationError("end_date must be on or after start_date")
    if start:
        base_query = base_query.filter(Sale.sale_date >= datetime.combine(start, time.min))
    if end:
        # Whole end day included
        base_query = base_query.filter(Sale.sale_date < datetime.combine(end + timedelta(days=1), time.min))

    return _paginate(base_query, page, per_page, 10)
