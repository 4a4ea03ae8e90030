"""
Pytest fixtures for retail_pos backend tests.

Provides an in-memory application, a per-test clean database, product
factories, and a test client. Audit events are delivered synchronously so
tests can assert on ActivityEvent rows without waiting on the worker.
"""

import pytest
from retail_pos import create_app
from retail_pos.extensions import db
from retail_pos.models import Product
from retail_pos.services.audit_service import audit_sink


ACTOR = "cashier-7"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUDIT_ASYNC': False,
        'DB_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        # Other tests may rebind the global sink or swap its writer
        audit_sink.init_app(app)
        audit_sink.set_writer(None)
        audit_sink.dropped = 0
        audit_sink.failed = 0

        yield db.session

        # Cleanup after test
        db.session.rollback()
        audit_sink.shutdown()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for catalog products; returns the persisted Product."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:03d}",
            "name": f"Product {counter['n']}",
            "price_cents": 10000,
            "cost_price_cents": 6000,
            "quantity": 10,
            "reorder_level": 2,
            "is_active": True,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def actor_headers():
    """Forwarded-identity header for state-changing routes."""
    return {'X-Actor-Id': ACTOR}
