"""
Pytest fixtures for backoffice backend tests.

Provides test database setup, user/product fixtures, and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import User, Product


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """
    Fresh data for each test.

    Each test gets its own app context, so flask.g (and the acting user the
    routes store on it) never leaks between tests.
    """
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def user(db_session):
    """Active cashier."""
    user = User(name="Cashier One", email="cashier@backoffice.local")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_user(db_session):
    user = User(name="Manager", email="manager@backoffice.local")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(stock=10, cost=5.0, retail_price=8.0, ...)."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "sku": f"SKU-{counter['n']:04d}",
            "name": f"Product {counter['n']}",
            "stock": 10,
            "cost": 5.0,
            "retail_price": 8.0,
            "wholesale_price": 6.5,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """stock=10, cost=5, retail=8, wholesale=6.5."""
    return make_product()


@pytest.fixture(scope='function')
def auth_headers(user) -> dict:
    """The gateway's acting-user header for the default user."""
    return {'X-User-Id': str(user.id)}
