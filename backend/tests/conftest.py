"""
Pytest fixtures for wallet backend tests.

Provides an in-memory database app, a per-test clean schema, the test
client and small factories for people and products.
"""

import pytest
from wallet import create_app
from wallet.extensions import db
from wallet.models import Person, Product
from wallet.models.people import ROLE_CUSTOMER
from wallet.services.audit_service import AuditSink


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'RETRY_ATTEMPTS': 1,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
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


class RecordingAuditSink(AuditSink):
    """Keeps entries in memory so tests can inspect what was reported."""

    def __init__(self):
        self.entries = []

    def append(self, entry):
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


@pytest.fixture(scope='function')
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name, stock=..., cost_cents=..., price_cents=...)."""
    def _make(
        name: str = "Widget",
        *,
        stock: int = 10,
        cost_cents: int = 500,
        price_cents: int = 1000,
        is_stockless: bool = False,
        is_service: bool = False,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            name=name,
            stock_quantity=stock,
            cost_price_cents=cost_cents,
            price_cents=price_cents,
            is_stockless=is_stockless,
            is_service=is_service,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_person(db_session):
    """Factory: make_person(name, role=CUSTOMER, phone=None)."""
    def _make(name: str = "Ann", *, role: str = ROLE_CUSTOMER, phone: str | None = None) -> Person:
        person = Person(name=name, role=role, phone=phone)
        db_session.add(person)
        db_session.commit()
        return person

    return _make
