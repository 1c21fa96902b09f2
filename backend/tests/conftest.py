"""
Pytest fixtures for salon backend tests.

Provides an in-memory database, test client/CLI runner and small factories
for customers, catalog entries and staff.
"""

from decimal import Decimal

import pytest
from salon import create_app
from salon.extensions import db
from salon.models import Customer, Service, Product, Staff


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: customer with zeroed aggregates unless overridden."""
    def _make(**overrides):
        values = {
            "full_name": "Aline Uwase",
            "phone": "0788000000",
            "sale_count": 0,
            "loyalty_points": 0,
            "total_spent": Decimal("0"),
        }
        values.update(overrides)
        customer = Customer(**values)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def make_service(db_session):
    """Factory: service priced 10000 unless overridden."""
    def _make(name="Braids", single_price=10000, **overrides):
        service = Service(name=name, single_price=Decimal(str(single_price)), **overrides)
        db_session.add(service)
        db_session.commit()
        return service
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product priced 5000 with 10 in stock unless overridden."""
    def _make(name="Hair Oil", price=5000, quantity=10, **overrides):
        product = Product(name=name, price=Decimal(str(price)), quantity=quantity, **overrides)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_staff(db_session):
    def _make(name="Grace", **overrides):
        staff = Staff(name=name, **overrides)
        db_session.add(staff)
        db_session.commit()
        return staff
    return _make


@pytest.fixture(scope='function')
def customer(make_customer):
    return make_customer()


@pytest.fixture(scope='function')
def service(make_service):
    return make_service()


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def sale_body():
    """Helper to build a create-sale body: sale_body(customer, [services], [(product, qty)], **extra)."""
    def _build(customer, services=(), products=(), **extra) -> dict:
        body = {
            "customer_id": customer.id,
            "services": [{"service_id": s.id} for s in services],
            "products": [{"product_id": p.id, "quantity": q} for p, q in products],
        }
        body.update(extra)
        return body
    return _build
