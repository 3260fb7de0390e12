"""
Pytest fixtures for branchstock backend tests.

Provides test database setup, branches, products, users with their
principals and bearer tokens, and the test client.
"""

import pytest

from branchstock import create_app
from branchstock.config import Config
from branchstock.extensions import db
from branchstock.models import Branch, BranchStock, Product, User
from branchstock.models.auth import ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN, ROLE_USER
from branchstock.services import session_service
from branchstock.services.permission_service import Principal


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WRITE_RETRY_ATTEMPTS = 2
    LOG_LEVEL = "WARNING"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
def branch(db_session):
    """Main branch with a usable contact number."""
    b = Branch(name="Centro", number="+54 9 11 5555-0101", address="Av. Siempre Viva 742", city="Rosario")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def other_branch(db_session):
    b = Branch(name="Norte", number="0341-4440000", city="Rosario")
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def product(db_session):
    """Product with 50 units in the central warehouse."""
    p = Product(sku="SKU-001", name="Yerba 1kg", brand="Playadito", price_cents=1000, central_quantity=50)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def second_product(db_session):
    p = Product(sku="SKU-002", name="Mate calabaza", brand="Artesanal", price_cents=2500, central_quantity=5)
    db_session.add(p)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Factory: set (available, reserved) of a branch ledger entry."""
    def _set(branch_obj, product_obj, available, reserved=0):
        entry = db_session.query(BranchStock).filter_by(
            branch_id=branch_obj.id, product_id=product_obj.id
        ).first()
        if entry is None:
            entry = BranchStock(branch_id=branch_obj.id, product_id=product_obj.id)
            db_session.add(entry)
        entry.quantity = available
        entry.available_quantity = None
        entry.reserved_quantity = reserved
        db_session.commit()
        return entry
    return _set


def stock_of(branch_obj, product_obj):
    """Current (available, reserved) of a branch ledger entry, read fresh."""
    db.session.expire_all()
    entry = db.session.query(BranchStock).filter_by(branch_id=branch_obj.id, product_id=product_obj.id).first()
    if entry is None:
        return None
    return entry.available, entry.reserved


def _make_user(db_session, username, role, branch_id=None):
    user = User(username=username, role=role, branch_id=branch_id, fullname=username.title())
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def central_admin(db_session):
    return _make_user(db_session, "central", ROLE_CENTRAL_ADMIN)


@pytest.fixture(scope='function')
def branch_admin(db_session, branch):
    user = _make_user(db_session, "encargado", ROLE_BRANCH_ADMIN, branch.id)
    branch.admin_user_id = user.id
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_branch_admin(db_session, other_branch):
    return _make_user(db_session, "encargado_norte", ROLE_BRANCH_ADMIN, other_branch.id)


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "cliente", ROLE_USER)


@pytest.fixture(scope='function')
def central_principal(central_admin):
    return Principal.from_user(central_admin)


@pytest.fixture(scope='function')
def branch_principal(branch_admin):
    return Principal.from_user(branch_admin)


@pytest.fixture(scope='function')
def other_branch_principal(other_branch_admin):
    return Principal.from_user(other_branch_admin)


@pytest.fixture(scope='function')
def customer_principal(customer):
    return Principal.from_user(customer)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def token_for(user) -> str:
    _session, token = session_service.create_session(user.id)
    return token


@pytest.fixture(scope='function')
def central_headers(central_admin):
    return auth_headers(token_for(central_admin))


@pytest.fixture(scope='function')
def branch_headers(branch_admin):
    return auth_headers(token_for(branch_admin))


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(token_for(customer))
