"""
Pytest fixtures for the tindahan backend tests.

Provides an in-memory application, a per-test clean database with the three
cash channels seeded, the Flask test client, and small record factories.
"""

import os
import tempfile
from datetime import timedelta

import pytest

from tindahan import create_app
from tindahan.extensions import db
from tindahan.models import Product
from tindahan.services import cash_service, stock_service
from tindahan.time_utils import today


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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
        cash_service.ensure_channels()
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app():
    """
    Application on a temporary SQLite file.

    Thread tests need real per-thread connections; the in-memory database
    shares a single connection across the whole process.
    """
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
    })
    with app.app_context():
        db.create_all()
        cash_service.ensure_channels()
        db.session.commit()
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
    tmpdir.cleanup()


@pytest.fixture
def make_product(db_session):
    """Factory: persisted product with optional expiration batches {days_from_today: qty}."""
    counter = {"n": 0}

    def _make(name=None, price_cents=2000, quantity=10, min_stock=5, barcode=None, category=None, batches=None):
        counter["n"] += 1
        product = Product(
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            quantity=quantity,
            min_stock=min_stock,
            barcode=barcode or f"TEST-{counter['n']:04d}",
            category=category,
        )
        for days, qty in (batches or {}).items():
            stock_service.add_batch(product, today() + timedelta(days=days), qty)
        db_session.add(product)
        db_session.commit()
        return product

    return _make

