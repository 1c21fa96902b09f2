from datetime import datetime, timedelta
from decimal import Decimal

from salon.models import CustomerDiscountUsage, DiscountRule
from salon.models.discounts import (
    TYPE_BIRTHDAY_MONTH,
    TYPE_BRING_OWN_PRODUCT,
    TYPE_MANUAL_DISCOUNT,
    TYPE_PROMOTIONAL,
    TYPE_SERVICE_COMBO,
    TYPE_SIXTH_VISIT,
)
from salon.services import discount_rules_service
from salon.services.discount_service import (
    CustomerSnapshot,
    PricedServiceLine,
    calculate_discounts,
    total_discount,
)
from salon.services.sale_payload import ManualAdjustment


NOW = datetime(2026, 3, 15, 10, 0, 0)


def _snapshot(sale_count=0, birth_month=None, customer_id=1):
    return CustomerSnapshot(id=customer_id, sale_count=sale_count, birth_month=birth_month)


def _line(service_id=1, name="Braids", total=10000):
    return PricedServiceLine(service_id=service_id, name=name, total_price=Decimal(str(total)))


def _types(discounts):
    return [d.type for d in discounts]


def test_no_discounts_for_plain_sale(db_session):
    assert calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW) == []


def test_sixth_visit_discount(db_session):
    discounts = calculate_discounts(_snapshot(sale_count=5), [_line()], Decimal("10000"), now=NOW)
    assert _types(discounts) == [TYPE_SIXTH_VISIT]
    assert discounts[0].amount == Decimal("2000.00")


def test_sixth_visit_fires_every_sixth_sale(db_session):
    assert _types(calculate_discounts(_snapshot(sale_count=11), [_line()], Decimal("10000"), now=NOW)) == [TYPE_SIXTH_VISIT]
    assert calculate_discounts(_snapshot(sale_count=6), [_line()], Decimal("10000"), now=NOW) == []


def test_percentage_rounds_to_whole_units(db_session):
    discounts = calculate_discounts(_snapshot(sale_count=5), [_line(total=10003)], Decimal("10003"), now=NOW)
    # 20% of 10003 = 2000.6 -> 2001
    assert discounts[0].amount == Decimal("2001.00")


def test_birthday_month_discount(db_session, make_customer):
    customer = make_customer(birth_month=3, sale_count=2)
    discounts = calculate_discounts(CustomerSnapshot.from_customer(customer), [_line()], Decimal("10000"), now=NOW)
    assert _types(discounts) == [TYPE_BIRTHDAY_MONTH]
    assert discounts[0].amount == Decimal("2000.00")


def test_birthday_requires_a_prior_visit(db_session):
    assert calculate_discounts(_snapshot(sale_count=0, birth_month=3), [_line()], Decimal("10000"), now=NOW) == []


def test_birthday_other_month(db_session):
    assert calculate_discounts(_snapshot(sale_count=2, birth_month=4), [_line()], Decimal("10000"), now=NOW) == []


def test_sixth_visit_and_birthday_are_exclusive(db_session):
    discounts = calculate_discounts(_snapshot(sale_count=5, birth_month=3), [_line()], Decimal("10000"), now=NOW)
    assert _types(discounts) == [TYPE_SIXTH_VISIT]


def test_birthday_once_per_calendar_month(db_session, make_customer):
    customer = make_customer(birth_month=3, sale_count=2)
    rule = discount_rules_service.ensure_rule(TYPE_BIRTHDAY_MONTH)
    db_session.add(CustomerDiscountUsage(
        customer_id=customer.id,
        discount_rule_id=rule.id,
        discount_amount=Decimal("2000"),
        used_at=NOW - timedelta(days=3),
    ))
    db_session.commit()

    snapshot = CustomerSnapshot.from_customer(customer)
    assert calculate_discounts(snapshot, [_line()], Decimal("10000"), now=NOW) == []


def test_birthday_usage_from_previous_month_does_not_block(db_session, make_customer):
    customer = make_customer(birth_month=3, sale_count=2)
    rule = discount_rules_service.ensure_rule(TYPE_BIRTHDAY_MONTH)
    db_session.add(CustomerDiscountUsage(
        customer_id=customer.id,
        discount_rule_id=rule.id,
        discount_amount=Decimal("2000"),
        used_at=datetime(2025, 3, 20),
    ))
    db_session.commit()

    snapshot = CustomerSnapshot.from_customer(customer)
    assert _types(calculate_discounts(snapshot, [_line()], Decimal("10000"), now=NOW)) == [TYPE_BIRTHDAY_MONTH]


def test_service_combo(db_session):
    lines = [_line(1, "Shampoo & Wash", 3000), _line(2, "Braids", 10000)]
    discounts = calculate_discounts(_snapshot(), lines, Decimal("13000"), now=NOW)
    assert _types(discounts) == [TYPE_SERVICE_COMBO]
    assert discounts[0].amount == Decimal("2000.00")


def test_service_combo_needs_another_service(db_session):
    lines = [_line(1, "Shampoo", 3000), _line(1, "Shampoo", 3000)]
    assert calculate_discounts(_snapshot(), lines, Decimal("6000"), now=NOW) == []


def test_service_combo_threshold(db_session):
    lines = [_line(1, "Shampoo", 900), _line(2, "Trim", 1000)]
    assert calculate_discounts(_snapshot(), lines, Decimal("1900"), now=NOW) == []


def test_bring_own_product(db_session):
    discounts = calculate_discounts(_snapshot(), [_line()], Decimal("10000"), bring_own_product=True, now=NOW)
    assert _types(discounts) == [TYPE_BRING_OWN_PRODUCT]
    assert discounts[0].amount == Decimal("1000.00")

    below = calculate_discounts(_snapshot(), [_line(total=999)], Decimal("999"), bring_own_product=True, now=NOW)
    assert below == []


def test_manual_discount_requires_reason(db_session):
    blank = ManualAdjustment(amount=Decimal("5000"), reason="")
    assert calculate_discounts(_snapshot(), [_line()], Decimal("10000"), manual_discount=blank, now=NOW) == []

    given = ManualAdjustment(amount=Decimal("500"), reason="Late start")
    discounts = calculate_discounts(_snapshot(), [_line()], Decimal("10000"), manual_discount=given, now=NOW)
    assert _types(discounts) == [TYPE_MANUAL_DISCOUNT]
    assert discounts[0].amount == Decimal("500.00")
    assert "Late start" in discounts[0].description


def test_fixed_evaluation_order(db_session):
    lines = [_line(1, "Shampoo", 3000), _line(2, "Braids", 10000)]
    discounts = calculate_discounts(
        _snapshot(sale_count=5),
        lines,
        Decimal("13000"),
        bring_own_product=True,
        manual_discount=ManualAdjustment(amount=Decimal("100"), reason="Regular"),
        now=NOW,
    )
    assert _types(discounts) == [TYPE_SIXTH_VISIT, TYPE_SERVICE_COMBO, TYPE_BRING_OWN_PRODUCT, TYPE_MANUAL_DISCOUNT]
    assert total_discount(discounts) == Decimal("5700.00")


def _rule(db_session, **overrides):
    values = {
        "name": "March Promo",
        "type": TYPE_PROMOTIONAL,
        "value": Decimal("10"),
        "is_percentage": True,
        "apply_to_all_services": True,
        "is_active": True,
    }
    values.update(overrides)
    rule = DiscountRule(**values)
    db_session.add(rule)
    db_session.commit()
    return rule


def test_promotional_rule_all_services(db_session):
    _rule(db_session)
    discounts = calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW)
    assert _types(discounts) == [TYPE_PROMOTIONAL]
    assert discounts[0].amount == Decimal("1000.00")
    assert discounts[0].rule_id is not None


def test_promotional_rule_scoped_to_services(db_session, make_service):
    scoped = make_service(name="Locs", single_price=4000)
    rule = _rule(db_session, apply_to_all_services=False, value=Decimal("50"))
    rule.services = [scoped]
    db_session.commit()

    lines = [_line(scoped.id, "Locs", 4000), _line(scoped.id + 100, "Braids", 10000)]
    discounts = calculate_discounts(_snapshot(), lines, Decimal("14000"), now=NOW)
    assert discounts[0].amount == Decimal("2000.00")


def test_promotional_rule_min_amount_and_cap(db_session):
    _rule(db_session, min_amount=Decimal("20000"))
    assert calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW) == []

    db_session.query(DiscountRule).delete()
    db_session.commit()

    _rule(db_session, value=Decimal("50"), max_discount=Decimal("1500"))
    discounts = calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW)
    assert discounts[0].amount == Decimal("1500.00")


def test_flat_promotional_rule_clamped_to_eligible_amount(db_session):
    _rule(db_session, is_percentage=False, value=Decimal("15000"))
    discounts = calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW)
    assert discounts[0].amount == Decimal("10000.00")


def test_promotional_rule_validity_window(db_session):
    _rule(db_session, name="Expired", start_date=datetime(2026, 1, 1), end_date=datetime(2026, 2, 1))
    _rule(db_session, name="Future", start_date=datetime(2026, 4, 1))
    _rule(db_session, name="Inactive", is_active=False)
    assert calculate_discounts(_snapshot(), [_line()], Decimal("10000"), now=NOW) == []
