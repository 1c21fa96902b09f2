import pytest

from salon.models import Product, StockMovement
from salon.services import inventory_service
from salon.services.exceptions import NotFoundError, OutOfStockError


def test_reserve_decrements_and_records_movement(db_session, make_product):
    product = make_product(quantity=5)

    inventory_service.reserve(product.id, 2, sale_id=42, note="Sale 42")
    db_session.commit()

    assert db_session.get(Product, product.id).quantity == 3
    movement = db_session.query(StockMovement).one()
    assert movement.type == inventory_service.MOVEMENT_SALE
    assert movement.quantity_delta == -2
    assert movement.quantity_after == 3
    assert movement.sale_id == 42


def test_reserve_exact_stock_is_allowed(db_session, make_product):
    product = make_product(quantity=2)
    inventory_service.reserve(product.id, 2)
    db_session.commit()
    assert db_session.get(Product, product.id).quantity == 0


def test_reserve_more_than_stock_fails_before_decrement(db_session, make_product):
    product = make_product(quantity=1)

    with pytest.raises(OutOfStockError) as exc:
        inventory_service.reserve(product.id, 2)
    db_session.rollback()

    assert exc.value.details == {"product_id": product.id, "requested": 2, "available": 1}
    assert db_session.get(Product, product.id).quantity == 1
    assert db_session.query(StockMovement).count() == 0


def test_release_is_inverse_of_reserve(db_session, make_product):
    product = make_product(quantity=4)
    inventory_service.reserve(product.id, 3, sale_id=1)
    inventory_service.release(product.id, 3, sale_id=1)
    db_session.commit()

    assert db_session.get(Product, product.id).quantity == 4
    types = [m.type for m in inventory_service.movements_for_sale(1)]
    assert types == [inventory_service.MOVEMENT_SALE, inventory_service.MOVEMENT_SALE_RELEASE]


def test_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        inventory_service.reserve(999, 1)


def test_module_documents_stock_invariants():
    assert "never negative at commit" in inventory_service.__doc__
