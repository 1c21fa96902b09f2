from decimal import Decimal

import pytest

from salon.services.exceptions import PaymentMismatchError
from salon.services.payment_service import (
    allocate_payments,
    normalize_method,
    primary_method,
)
from salon.services.sale_payload import PaymentInput


@pytest.fixture(autouse=True)
def _ctx(app):
    with app.app_context():
        yield


def test_normalize_method():
    assert normalize_method(" momo ") == "MOMO"
    assert normalize_method("bank_card") == "BANK_CARD"
    assert normalize_method(None) == "CASH"


def test_unknown_method_becomes_cash_with_warning(app, caplog):
    with caplog.at_level("WARNING"):
        assert normalize_method("bitcoin") == "CASH"
    assert any("BITCOIN" in r.getMessage() for r in caplog.records)


def test_legacy_single_payment_covers_final_amount():
    allocations = allocate_payments(None, Decimal("8000"), legacy_method="mobile_money")
    assert len(allocations) == 1
    assert allocations[0].payment_method == "MOBILE_MONEY"
    assert allocations[0].amount == Decimal("8000.00")


def test_split_payment():
    allocations = allocate_payments(
        [PaymentInput("CASH", Decimal("3000")), PaymentInput("MOMO", Decimal("5000"))],
        Decimal("8000"),
    )
    assert [(a.payment_method, a.amount) for a in allocations] == [
        ("CASH", Decimal("3000.00")),
        ("MOMO", Decimal("5000.00")),
    ]
    assert primary_method(allocations) == "CASH"


def test_split_payment_within_tolerance():
    allocations = allocate_payments(
        [PaymentInput("CASH", Decimal("3999.99")), PaymentInput("MOMO", Decimal("4000"))],
        Decimal("8000"),
    )
    assert len(allocations) == 2


def test_payment_mismatch():
    with pytest.raises(PaymentMismatchError) as exc:
        allocate_payments([PaymentInput("CASH", Decimal("7000"))], Decimal("8000"))
    assert exc.value.details == {"payments_total": "7000.00", "final_amount": "8000.00"}
