"""
Pytest fixtures for retail ledger backend tests.

Provides test database setup, catalog fixtures, a recording notification
sink, and test client.
"""

import pytest
from retail_ledger import create_app
from retail_ledger.extensions import db
from retail_ledger.services import notification_service, products_service
from retail_ledger.services.cart_service import Cart


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
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
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes skip the append-only guards)
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create an Active product with opening stock at the default location."""
    counter = {"n": 0}

    def _make(name="Widget", price_cents=1000, stock=10, **kwargs):
        counter["n"] += 1
        sku = kwargs.pop("sku", f"SKU-{counter['n']:04d}")
        return products_service.create_product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            initial_stock=stock,
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def product_a(make_product):
    """Product A: $10.00, 5 in stock."""
    return make_product(name="Product A", price_cents=1000, stock=5, sku="PROD-A")


@pytest.fixture(scope='function')
def product_b(make_product):
    """Product B: $20.00, 1 in stock."""
    return make_product(name="Product B", price_cents=2000, stock=1, sku="PROD-B")


@pytest.fixture(scope='function')
def cart(app):
    """Empty cart at 5% tax."""
    return Cart(tax_rate_bps=500)


@pytest.fixture(scope='function')
def notifications(app):
    """Record every notification sent during the test."""
    events = []

    def sink(event, message, level, context):
        events.append({"event": event, "message": message, "level": level, "context": context})

    notification_service.register_sink(sink)
    yield events
    notification_service.unregister_sink(sink)


def place_order(cart, *items, **kwargs):
    """Helper: fill the cart with (product, quantity) pairs and check out."""
    from retail_ledger.services import checkout_service

    for product, quantity in items:
        cart.add(product, quantity)
    kwargs.setdefault("payment_method", "card")
    payment_method = kwargs.pop("payment_method")
    return checkout_service.checkout(cart, payment_method, **kwargs)
