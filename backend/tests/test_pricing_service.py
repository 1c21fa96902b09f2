from decimal import Decimal
from types import SimpleNamespace

from salon.services.pricing_service import (
    line_total,
    resolve_product_unit_price,
    resolve_service_unit_price,
)


def _service(single=8000, combined=None, child=None, child_combined=None):
    return SimpleNamespace(
        single_price=single,
        combined_price=combined,
        child_price=child,
        child_combined_price=child_combined,
    )


def test_adult_base_price():
    assert resolve_service_unit_price(_service(8000, 10000)) == Decimal("8000.00")


def test_adult_add_on_uses_combined_tier():
    price = resolve_service_unit_price(_service(8000, 10000), add_shampoo=True)
    assert price == Decimal("10000.00")


def test_missing_combined_tier_falls_back_to_single():
    price = resolve_service_unit_price(_service(8000, None), add_shampoo=True)
    assert price == Decimal("8000.00")


def test_child_prices():
    svc = _service(8000, 10000, child=5000, child_combined=6500)
    assert resolve_service_unit_price(svc, is_child=True) == Decimal("5000.00")
    assert resolve_service_unit_price(svc, is_child=True, add_shampoo=True) == Decimal("6500.00")


def test_child_without_child_tiers_falls_back():
    svc = _service(8000, 10000)
    # no child price -> single price, add-on without child_combined -> child/single base
    assert resolve_service_unit_price(svc, is_child=True) == Decimal("8000.00")
    assert resolve_service_unit_price(svc, is_child=True, add_shampoo=True) == Decimal("8000.00")


def test_child_add_on_without_child_combined_uses_child_price():
    svc = _service(8000, 10000, child=5000)
    assert resolve_service_unit_price(svc, is_child=True, add_shampoo=True) == Decimal("5000.00")


def test_product_price_has_no_tiers():
    product = SimpleNamespace(price="2500.5")
    assert resolve_product_unit_price(product) == Decimal("2500.50")


def test_line_total():
    assert line_total(Decimal("2500.50"), 3) == Decimal("7501.50")
