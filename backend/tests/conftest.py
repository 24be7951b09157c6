"""
Pytest fixtures for stockroom backend tests.

Provides the app on an in-memory database, a per-test table wipe, the test
client, and a TransactionEngine driven by a deterministic clock.
"""

from datetime import datetime, timedelta
from itertools import count

import pytest
from stockroom import create_app
from stockroom.extensions import db
from stockroom.services.transaction_engine import TransactionEngine


class FakeClock:
    """Advances one minute per reading so movements never share a timestamp."""

    def __init__(self, start=datetime(2026, 3, 2, 9, 0, 0), step=timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self):
        now = self.current
        self.current = self.current + self.step
        return now


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def clock():
    return FakeClock()


@pytest.fixture(scope='function')
def engine(app, db_session, clock):
    """Engine sharing the app's lock registry, with a deterministic clock."""
    return TransactionEngine(
        locks=app.extensions["stockroom_locks"],
        clock=clock,
        tax_rate_bps=500,
        lock_timeout=2.0,
    )


@pytest.fixture(scope='function')
def make_product(engine):
    """Factory: create a product through the engine (so it has an INITIAL movement)."""
    serial = count(1)

    def _make(**overrides):
        n = next(serial)
        fields = {
            "sku": f"SKU-{n:03d}",
            "name": f"Product {n}",
            "category": "General",
            "unit_cost_cents": 1000,
            "margin_percent": 0,
            "stock": 10,
            "min_stock": 2,
        }
        fields.update(overrides)
        return engine.create_product(fields)

    return _make
