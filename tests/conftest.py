"""
Pytest fixtures for salesdesk tests.

Provides an in-memory application per test, the Flask test client, and
small factories for items, salespeople and allocations.
"""

import itertools

import pytest

from salesdesk import create_app
from salesdesk.extensions import db
from salesdesk.services import allocation_service, item_service, salesperson_service


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "DB_RETRY_BACKOFF": 0,
    "LOG_LEVEL": "WARNING",
}


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "items: Item ledger tests")
    config.addinivalue_line("markers", "salespeople: Salesperson ledger tests")
    config.addinivalue_line("markers", "allocations: Allocation lifecycle tests")
    config.addinivalue_line("markers", "end_of_day: End-of-day reconciliation tests")
    config.addinivalue_line("markers", "reports: Reporting tests")


@pytest.fixture(scope='function')
def app():
    """Create application with a fresh in-memory database."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Session bound to the test's app context."""
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def make_item(db_session):
    counter = itertools.count(1)

    def _make(**overrides):
        patch = {
            "sku": f"SKU-{next(counter):03d}",
            "name": "Bottled Water",
            "price_cents": 1000,
            "stock": 50,
            "min_stock": 5,
        }
        patch.update(overrides)
        return item_service.create_item(patch=patch)

    return _make


@pytest.fixture(scope='function')
def make_salesperson(db_session):
    counter = itertools.count(1)

    def _make(**overrides):
        patch = {"name": f"Salesperson {next(counter)}", "phone": "555-0100"}
        patch.update(overrides)
        return salesperson_service.create_salesperson(patch=patch)

    return _make


@pytest.fixture(scope='function')
def make_allocation(db_session):
    def _make(salesperson, item, quantity, **kwargs):
        return allocation_service.allocate(
            salesperson_id=salesperson.id,
            item_id=item.id,
            quantity=quantity,
            **kwargs,
        )

    return _make


def assert_response(response, expected_status: int, scenario: str):
    """Assert HTTP status with the body in the failure message."""
    assert response.status_code == expected_status, (
        f"{scenario}: expected HTTP {expected_status}, got {response.status_code}. "
        f"Body: {response.get_data(as_text=True)[:500]}"
    )
    return response.get_json()
