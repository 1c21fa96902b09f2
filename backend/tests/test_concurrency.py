"""
Concurrent stock updates against a file-backed SQLite database.

Two sessions stand in for two tills selling the same product. SQLite
ignores FOR UPDATE, so the Product.version_id column is what turns the
losing write into StaleDataError; run_in_transaction retries it against
fresh stock.
"""

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from salon import create_app
from salon.extensions import db
from salon.models import Product, StockMovement
from salon.services import inventory_service
from salon.services.concurrency import run_in_transaction
from salon.services.exceptions import OutOfStockError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'tills.sqlite3'}",
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def stocked_product(file_app):
    def _make(quantity):
        product = Product(name="Hair Oil", price=5000, quantity=quantity)
        db.session.add(product)
        db.session.commit()
        return product.id
    return _make


def _sell_elsewhere(product_id, quantity):
    """Another till sells from its own session and commits."""
    with Session(db.engine) as other:
        product = other.get(Product, product_id)
        product.quantity -= quantity
        other.commit()


def _other_till_sells_mid_reserve(monkeypatch, product_id, quantity):
    """The first reserve() is interrupted by another till's committed sale."""
    real_record = inventory_service._record
    calls = []

    def record(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            _sell_elsewhere(product_id, quantity)
        return real_record(*args, **kwargs)

    monkeypatch.setattr(inventory_service, "_record", record)
    return calls


def _stock(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity


def test_stale_product_write_is_rejected(stocked_product):
    product_id = stocked_product(5)
    product = db.session.get(Product, product_id)

    _sell_elsewhere(product_id, 2)

    product.quantity = product.quantity - 1
    with pytest.raises(StaleDataError):
        db.session.flush()
    db.session.rollback()

    assert _stock(product_id) == 3


def test_reserve_retries_after_concurrent_sale(stocked_product, monkeypatch):
    product_id = stocked_product(5)
    calls = _other_till_sells_mid_reserve(monkeypatch, product_id, 2)

    run_in_transaction(lambda: inventory_service.reserve(product_id, 2, sale_id=1), backoff_base=0)

    # first attempt lost the race, second one saw the other sale
    assert len(calls) == 2
    assert _stock(product_id) == 1
    movements = db.session.query(StockMovement).filter_by(product_id=product_id).all()
    assert [(m.quantity_delta, m.quantity_after) for m in movements] == [(-2, 1)]


def test_retry_checks_stock_left_by_concurrent_sale(stocked_product, monkeypatch):
    product_id = stocked_product(3)
    calls = _other_till_sells_mid_reserve(monkeypatch, product_id, 2)

    with pytest.raises(OutOfStockError) as exc:
        run_in_transaction(lambda: inventory_service.reserve(product_id, 2), backoff_base=0)

    assert len(calls) == 1
    assert exc.value.details == {"product_id": product_id, "requested": 2, "available": 1}
    assert _stock(product_id) == 1
    assert db.session.query(StockMovement).count() == 0


def test_retry_gives_up_after_max_attempts(stocked_product):
    product_id = stocked_product(5)
    attempts = []

    def always_stale():
        attempts.append(1)
        product = db.session.get(Product, product_id)
        product.quantity  # load before the other till writes
        _sell_elsewhere(product_id, 1)
        product.quantity = product.quantity - 1
        db.session.flush()

    with pytest.raises(StaleDataError):
        run_in_transaction(always_stale, attempts=3, backoff_base=0)

    assert len(attempts) == 3
    # only the other till's three sales landed
    assert _stock(product_id) == 2
