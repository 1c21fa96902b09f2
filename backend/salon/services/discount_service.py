"""
Discount policy engine.

calculate_discounts() returns the discounts for a new sale in a fixed order:

1. SIXTH_VISIT      20% when this sale is the customer's 6th, 12th, ...
2. BIRTHDAY_MONTH   20% in the birth month, returning customers only,
                    once per calendar month, never together with (1)
3. SERVICE_COMBO    flat 2000 for a shampoo service plus another service
4. BRING_OWN_PRODUCT flat 1000 when the customer brings their own product
5. MANUAL_DISCOUNT  operator amount, only with a non-blank reason
6. promotional      every active operator rule valid right now

Percentage discounts round to whole currency units (half-up).

Edits do not go through calculate_discounts: see preserved_automatic_discounts.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import CustomerDiscountUsage, DiscountRule
from ..models.discounts import (
    TYPE_SIXTH_VISIT,
    TYPE_BIRTHDAY_MONTH,
    TYPE_SERVICE_COMBO,
    TYPE_BRING_OWN_PRODUCT,
    TYPE_MANUAL_DISCOUNT,
)
from ..money import to_money, round_units, ZERO
from salon.time_utils import utcnow, start_of_month
from . import discount_rules_service
from .sale_payload import ManualAdjustment


VISIT_CYCLE = 6
LOYALTY_RATE = Decimal("0.20")

COMBO_THRESHOLD = Decimal("2000")
COMBO_AMOUNT = Decimal("2000")

OWN_PRODUCT_THRESHOLD = Decimal("1000")
OWN_PRODUCT_AMOUNT = Decimal("1000")

COMBO_KEYWORD = "shampoo"


@dataclass(frozen=True)
class DiscountCalculation:
    type: str
    amount: Decimal
    description: str
    # Set for promotional rules (and for preserved rows); system types resolve
    # their rule through discount_rules_service.ensure_rule
    rule_id: int | None = None


@dataclass(frozen=True)
class CustomerSnapshot:
    """The customer history the engine needs, read before the sale is written."""
    id: int
    sale_count: int
    birth_month: int | None

    @classmethod
    def from_customer(cls, customer) -> "CustomerSnapshot":
        return cls(id=customer.id, sale_count=customer.sale_count or 0, birth_month=customer.birth_month)


@dataclass(frozen=True)
class PricedServiceLine:
    service_id: int
    name: str
    total_price: Decimal


def birthday_discount_used_since(customer_id: int, since: datetime) -> bool:
    return db.session.query(
        db.session.query(CustomerDiscountUsage)
        .join(DiscountRule, CustomerDiscountUsage.discount_rule_id == DiscountRule.id)
        .filter(
            CustomerDiscountUsage.customer_id == customer_id,
            CustomerDiscountUsage.used_at >= since,
            DiscountRule.type == TYPE_BIRTHDAY_MONTH,
        )
        .exists()
    ).scalar()


def _percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    return round_units(to_money(amount) * rate)


def _is_combo_service(line: PricedServiceLine) -> bool:
    return COMBO_KEYWORD in (line.name or "").lower()


def _promotional_amount(rule: DiscountRule, service_lines: list[PricedServiceLine], subtotal: Decimal) -> Decimal:
    """Amount a single operator rule grants on this sale (ZERO when it does not apply)."""
    if rule.apply_to_all_services:
        eligible = subtotal
    else:
        scoped = {s.id for s in rule.services}
        eligible = to_money(sum((l.total_price for l in service_lines if l.service_id in scoped), ZERO))

    if eligible <= ZERO:
        return ZERO
    if rule.min_amount is not None and eligible < to_money(rule.min_amount):
        return ZERO

    value = to_money(rule.value)
    if rule.is_percentage:
        amount = _percent_of(eligible, value / Decimal("100"))
    else:
        amount = value

    if rule.max_discount is not None and to_money(rule.max_discount) > ZERO:
        amount = min(amount, to_money(rule.max_discount))
    amount = min(amount, eligible)
    return amount if amount > ZERO else ZERO


def calculate_discounts(
    customer: CustomerSnapshot,
    service_lines: Iterable[PricedServiceLine],
    subtotal: Decimal,
    *,
    bring_own_product: bool = False,
    manual_discount: ManualAdjustment | None = None,
    now: datetime | None = None,
) -> list[DiscountCalculation]:
    """
    Evaluate every discount for a sale being created.

    customer.sale_count is the count BEFORE this sale. The birthday check
    reads CustomerDiscountUsage; nothing is written here.
    """
    now = now or utcnow()
    subtotal = to_money(subtotal)
    service_lines = list(service_lines)
    discounts: list[DiscountCalculation] = []

    sixth_visit = (customer.sale_count + 1) % VISIT_CYCLE == 0
    if sixth_visit:
        discounts.append(DiscountCalculation(
            type=TYPE_SIXTH_VISIT,
            amount=_percent_of(subtotal, LOYALTY_RATE),
            description="6th Visit Discount (20%)",
        ))

    if (
        not sixth_visit
        and customer.birth_month == now.month
        and customer.sale_count >= 1
        and not birthday_discount_used_since(customer.id, start_of_month(now))
    ):
        discounts.append(DiscountCalculation(
            type=TYPE_BIRTHDAY_MONTH,
            amount=_percent_of(subtotal, LOYALTY_RATE),
            description="Birthday Month Discount (20%)",
        ))

    has_combo_service = any(_is_combo_service(l) for l in service_lines)
    has_other_service = any(not _is_combo_service(l) for l in service_lines)
    if has_combo_service and has_other_service and subtotal >= COMBO_THRESHOLD:
        discounts.append(DiscountCalculation(
            type=TYPE_SERVICE_COMBO,
            amount=to_money(COMBO_AMOUNT),
            description="Shampoo + Service Combo Discount",
        ))

    if bring_own_product and subtotal >= OWN_PRODUCT_THRESHOLD:
        discounts.append(DiscountCalculation(
            type=TYPE_BRING_OWN_PRODUCT,
            amount=to_money(OWN_PRODUCT_AMOUNT),
            description="Bring Your Own Product Discount",
        ))

    # A blank reason means no discount, whatever the amount
    if manual_discount is not None and manual_discount.applies:
        discounts.append(manual_discount_calculation(manual_discount))

    for rule in discount_rules_service.find_active_valid_now(now):
        amount = _promotional_amount(rule, service_lines, subtotal)
        if amount <= ZERO:
            continue
        discounts.append(DiscountCalculation(
            type=rule.type,
            amount=amount,
            description=rule.name,
            rule_id=rule.id,
        ))

    current_app.logger.debug(
        "Discounts for customer %s on subtotal %s: %s",
        customer.id,
        subtotal,
        [(d.type, str(d.amount)) for d in discounts],
    )
    return discounts


def manual_discount_calculation(manual: ManualAdjustment) -> DiscountCalculation:
    return DiscountCalculation(
        type=TYPE_MANUAL_DISCOUNT,
        amount=to_money(manual.amount),
        description=f"Manual Discount: {manual.reason}",
    )


def preserved_automatic_discounts(sale) -> list[DiscountCalculation]:
    """
    Discounts an edited sale keeps.

    Edits never re-run calculate_discounts: the automatic and promotional
    discounts granted when the sale was created are carried over verbatim,
    so changing line items cannot grant or revoke a one-time discount after
    the fact. Only the manual discount is replaceable on edit, so it is
    left out here and re-added by the caller.
    """
    kept = []
    for row in sale.discounts:
        rule_type = row.discount_rule.type if row.discount_rule else None
        if rule_type == TYPE_MANUAL_DISCOUNT:
            continue
        kept.append(DiscountCalculation(
            type=rule_type,
            amount=to_money(row.discount_amount),
            description=row.description or "",
            rule_id=row.discount_rule_id,
        ))
    return kept


def existing_manual_discount(sale) -> DiscountCalculation | None:
    for row in sale.discounts:
        if row.discount_rule and row.discount_rule.type == TYPE_MANUAL_DISCOUNT:
            return DiscountCalculation(
                type=TYPE_MANUAL_DISCOUNT,
                amount=to_money(row.discount_amount),
                description=row.description or "",
                rule_id=row.discount_rule_id,
            )
    return None


def total_discount(discounts: Iterable[DiscountCalculation]) -> Decimal:
    return to_money(sum((d.amount for d in discounts), ZERO))


# Stored SaleDiscount.position per type; promotional rules follow in evaluation order
DISCOUNT_POSITIONS = {
    TYPE_SIXTH_VISIT: 0,
    TYPE_BIRTHDAY_MONTH: 1,
    TYPE_SERVICE_COMBO: 2,
    TYPE_BRING_OWN_PRODUCT: 3,
    TYPE_MANUAL_DISCOUNT: 4,
}
PROMOTIONAL_POSITION_BASE = 5


def discount_position(calc: DiscountCalculation, index: int) -> int:
    return DISCOUNT_POSITIONS.get(calc.type, PROMOTIONAL_POSITION_BASE + index)
