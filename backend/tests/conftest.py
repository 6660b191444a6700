"""
Pytest fixtures for bizdesk backend tests.

Provides an in-memory database, per-test table wipe, two independent
business accounts, a product factory and bearer-token helpers.
"""

import pytest

from bizdesk import create_app
from bizdesk.extensions import db
from bizdesk.models import Product, User
from bizdesk.services.auth_service import hash_password
from bizdesk.services.session_service import create_session

TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SALE_RETRY_BACKOFF': 0,
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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is deliberately slow; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


def _make_user(session, password_hash, name, email, phone=None):
    user = User(
        name=name,
        email=email,
        phone=phone,
        password_hash=password_hash,
        business_name=f"{name} Stores",
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def seller(db_session, password_hash):
    """Business account A."""
    return _make_user(db_session, password_hash, "Ada", "ada@example.com", "+2348000000001")


@pytest.fixture(scope='function')
def other_seller(db_session, password_hash):
    """Business account B (separate owner scope)."""
    return _make_user(db_session, password_hash, "Bola", "bola@example.com", "+2348000000002")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: insert a product row with an opening quantity."""
    counter = {"n": 0}

    def _make(owner, quantity=10, unit_price_cents=1000, **kwargs):
        counter["n"] += 1
        product = Product(
            owner_id=owner.id,
            product_code=kwargs.pop("product_code", f"P-{counter['n']:03d}"),
            name=kwargs.pop("name", f"Product {counter['n']}"),
            unit_price_cents=unit_price_cents,
            quantity=quantity,
            min_stock_level=kwargs.pop("min_stock_level", 2),
            **kwargs,
        )
        product.recompute_status()
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seller_headers(seller):
    _, token = create_session(seller.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def other_headers(other_seller):
    _, token = create_session(other_seller.id)
    return auth_headers(token)
