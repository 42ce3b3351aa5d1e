"""
Pytest fixtures for PharmaPOS backend tests.

Provides the app on an in-memory database, a per-test clean schema, a test
client, and a product factory that goes through the catalog service so
opening stock is always a recorded movement.
"""

import pytest

from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.services import catalog_service
from pharmapos.services.cart_service import cart_sessions
from pharmapos.services.concurrency import stock_locks


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_LOCK_TIMEOUT_SECONDS': 1,
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
def db_session(app):
    """Fresh tables, carts and stock locks for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        cart_sessions.init_app(app)
        stock_locks.init_app(app)

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for products with preset units.

    prices are applied to the preset units in order; stock is the opening
    RESTOCK in base units.
    """
    def _make(
        name="Paracetamol 500mg",
        *,
        product_type="tablets",
        prices=(5, 50, 450),
        stock=100,
        cost=2,
        category="Analgesics",
        reorder_level=10,
        is_active=True,
    ):
        units = catalog_service.default_units(product_type)
        for unit, price in zip(units, prices):
            unit["price_cents"] = price
        return catalog_service.create_product(
            patch={
                "name": name,
                "category": category,
                "product_type": product_type,
                "cost_price_cents": cost,
                "reorder_level": reorder_level,
                "is_active": is_active,
            },
            units=units,
            opening_stock=stock,
            actor_id="test",
            actor_name="Test Fixture",
        )

    return _make


@pytest.fixture(scope='function')
def paracetamol(make_product):
    """Tablet 5c, strip of 10 50c, box of 100 450c; 100 tablets in stock."""
    return make_product()


@pytest.fixture(scope='function')
def cart(db_session):
    return cart_sessions.get_or_create("c-001", "Alice")


@pytest.fixture(scope='function')
def headers():
    """Cashier identity headers for API calls."""
    return {"X-Cashier-Id": "c-001", "X-Cashier-Name": "Alice"}
