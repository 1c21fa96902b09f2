from decimal import Decimal

import pytest

from salon.services.exceptions import SaleValidationError
from salon.services.sale_payload import normalize_sale_payload


def test_create_requires_customer():
    with pytest.raises(SaleValidationError):
        normalize_sale_payload({"services": [{"service_id": 1}]})


def test_create_requires_service_or_product():
    with pytest.raises(SaleValidationError):
        normalize_sale_payload({"customer_id": 1, "services": [], "products": []})


def test_detailed_services_array():
    payload = normalize_sale_payload({
        "customer_id": "7",
        "services": [{"service_id": 3, "quantity": 2, "is_child": True, "add_shampoo": True}],
    })
    assert payload.customer_id == 7
    sel = payload.services[0]
    assert (sel.service_id, sel.quantity, sel.is_child, sel.add_shampoo) == (3, 2, True, True)


def test_simplified_service_ids_with_per_service_add_on():
    payload = normalize_sale_payload({
        "customer_id": 1,
        "service_ids": [4, 5],
        "service_addon_options": {"5": True},
        "add_shampoo": False,
    })
    assert [(s.service_id, s.add_shampoo, s.quantity) for s in payload.services] == [(4, False, 1), (5, True, 1)]


def test_simplified_service_ids_use_global_add_on_fallback():
    payload = normalize_sale_payload({"customer_id": 1, "service_ids": [4], "add_shampoo": True})
    assert payload.services[0].add_shampoo is True


def test_detailed_array_wins_over_service_ids():
    payload = normalize_sale_payload({
        "customer_id": 1,
        "services": [{"service_id": 9}],
        "service_ids": [4, 5],
    })
    assert [s.service_id for s in payload.services] == [9]


def test_quantity_must_be_positive():
    with pytest.raises(SaleValidationError):
        normalize_sale_payload({"customer_id": 1, "products": [{"product_id": 1, "quantity": 0}]})


def test_negative_payment_rejected():
    with pytest.raises(SaleValidationError):
        normalize_sale_payload({
            "customer_id": 1,
            "services": [{"service_id": 1}],
            "payments": [{"payment_method": "CASH", "amount": -5}],
        })


def test_manual_adjustments_need_reason():
    payload = normalize_sale_payload({
        "customer_id": 1,
        "services": [{"service_id": 1}],
        "manual_discount_amount": 5000,
        "manual_discount_reason": "   ",
        "manual_increment_amount": "1500",
        "manual_increment_reason": " premium styling ",
    })
    assert payload.manual_discount.applies is False
    assert payload.manual_increment.applies is True
    assert payload.manual_increment.amount == Decimal("1500.00")
    assert payload.manual_increment.reason == "premium styling"


def test_update_leaves_missing_collections_unset():
    payload = normalize_sale_payload({"notes": "touch-up"}, for_update=True)
    assert payload.services is None
    assert payload.products is None
    assert payload.payments is None
    assert payload.staff_supplied is False
    assert payload.notes_supplied is True
    assert payload.notes == "touch-up"


def test_update_ignores_customer_change():
    payload = normalize_sale_payload({"customer_id": 99}, for_update=True)
    assert payload.customer_id is None
    assert payload.ignored == ["customer_id"]


def test_update_empty_list_means_replace_with_nothing():
    payload = normalize_sale_payload({"products": []}, for_update=True)
    assert payload.products == []
