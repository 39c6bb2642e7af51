"""
Pytest fixtures for invoicedesk backend tests.

Provides test database setup, users with session tokens, and test client.
"""

import pytest

from invoicedesk import create_app
from invoicedesk.extensions import db
from invoicedesk.models.auth import ROLE_CEO, ROLE_MANAGER
from invoicedesk.services.auth_service import create_user
from invoicedesk.services import session_service

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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
def ceo(db_session):
    return create_user(name="Ama Owusu", email="ceo@shop.local", password=TEST_PASSWORD, role=ROLE_CEO)


@pytest.fixture(scope='function')
def manager(db_session):
    return create_user(name="Kofi Boateng", email="manager@shop.local", password=TEST_PASSWORD, role=ROLE_MANAGER)


@pytest.fixture(scope='function')
def ceo_headers(ceo):
    _, token = session_service.create_session(ceo.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def manager_headers(manager):
    _, token = session_service.create_session(manager.id)
    return auth_headers(token)


def get_auth_token(client, email: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def invoice_payload(items=None, **overrides) -> dict:
    """Minimal valid create-invoice body."""
    payload = {
        'items': items if items is not None else [
            {'product_name': 'Cement bag', 'quantity': 3, 'unit_price': 10, 'discount': 0, 'cost_price': 7},
        ],
        'payment_type': 'credit',
        'customer_name': 'Yaw Mensah',
    }
    payload.update(overrides)
    return payload
