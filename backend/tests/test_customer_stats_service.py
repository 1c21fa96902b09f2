from datetime import datetime
from decimal import Decimal

import pytest

from salon.models import Customer, Sale
from salon.services import customer_stats_service
from salon.services.customer_stats_service import StatsDelta
from salon.services.exceptions import NotFoundError


def test_loyalty_points_for(db_session):
    assert customer_stats_service.loyalty_points_for(Decimal("8000")) == 8
    assert customer_stats_service.loyalty_points_for(Decimal("999.99")) == 0
    assert customer_stats_service.loyalty_points_for(Decimal("15750")) == 15
    assert customer_stats_service.loyalty_points_for(Decimal("0")) == 0


def test_loyalty_point_unit_is_configurable(app, db_session):
    app.config["LOYALTY_POINT_UNIT"] = 500
    try:
        assert customer_stats_service.loyalty_points_for(Decimal("8000")) == 16
    finally:
        app.config["LOYALTY_POINT_UNIT"] = 1000


def test_apply_positive_delta(db_session, make_customer):
    customer = make_customer()
    when = datetime(2026, 3, 1, 9, 30)

    customer_stats_service.apply_delta(customer.id, StatsDelta(
        visit_count=1, points=8, spend=Decimal("8000"), last_sale_at=when,
    ))
    db_session.commit()

    refreshed = db_session.get(Customer, customer.id)
    assert refreshed.sale_count == 1
    assert refreshed.loyalty_points == 8
    assert refreshed.total_spent == Decimal("8000.00")
    assert refreshed.last_sale_at == when


def test_negative_delta_is_clamped_at_zero(db_session, make_customer):
    customer = make_customer(sale_count=1, loyalty_points=3, total_spent=Decimal("3000"))

    customer_stats_service.apply_delta(customer.id, StatsDelta(
        visit_count=-2, points=-10, spend=Decimal("-5000"),
    ))
    db_session.commit()

    refreshed = db_session.get(Customer, customer.id)
    assert refreshed.sale_count == 0
    assert refreshed.loyalty_points == 0
    assert refreshed.total_spent == Decimal("0.00")


def test_last_sale_at_untouched_unless_given(db_session, make_customer):
    when = datetime(2026, 2, 2, 12, 0)
    customer = make_customer(last_sale_at=when)

    customer_stats_service.apply_delta(customer.id, StatsDelta(points=1))
    db_session.commit()
    assert db_session.get(Customer, customer.id).last_sale_at == when

    customer_stats_service.apply_delta(customer.id, StatsDelta(last_sale_at=None))
    db_session.commit()
    assert db_session.get(Customer, customer.id).last_sale_at is None


def test_apply_delta_unknown_customer(db_session):
    with pytest.raises(NotFoundError):
        customer_stats_service.apply_delta(404, StatsDelta(visit_count=1))


def test_most_recent_sale_date(db_session, make_customer):
    customer = make_customer()
    dates = [datetime(2026, 1, 5), datetime(2026, 2, 5), datetime(2026, 3, 5)]
    sales = []
    for d in dates:
        sale = Sale(customer_id=customer.id, sale_date=d)
        db_session.add(sale)
        sales.append(sale)
    db_session.commit()

    assert customer_stats_service.most_recent_sale_date(customer.id) == dates[2]
    assert customer_stats_service.most_recent_sale_date(customer.id, exclude_sale_id=sales[2].id) == dates[1]
    assert customer_stats_service.most_recent_sale_date(12345) is None
