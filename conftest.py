"""
Shared pytest fixtures: an in-memory SQLite database seeded with the demo data
"""

import pytest

from database import DatabaseManager
from models import Product, Profile
from seed_data import SeedDataManager


@pytest.fixture
def db_manager():
    manager = DatabaseManager("sqlite:///:memory:")
    manager.init_db()
    yield manager
    manager.close()


@pytest.fixture
def session(db_manager):
    session = db_manager.get_session()
    SeedDataManager(session).seed_default_data()
    session.commit()
    yield session
    session.close()


def _profile(session, email):
    return session.query(Profile).filter(Profile.email == email).one()


@pytest.fixture
def jane(session):
    """Customer with approved KYC and a KSh 10,000 credit limit"""
    return _profile(session, "jane@example.com")


@pytest.fixture
def brian(session):
    """Customer without KYC"""
    return _profile(session, "brian@example.com")


@pytest.fixture
def admin(session):
    return _profile(session, "admin@freshcart.co.ke")


@pytest.fixture
def packer(session):
    return _profile(session, "packer@freshcart.co.ke")


@pytest.fixture
def rider(session):
    return _profile(session, "kamau@freshcart.co.ke")


@pytest.fixture
def second_rider(session):
    return _profile(session, "achieng@freshcart.co.ke")


@pytest.fixture
def product(session):
    """Look up a seeded product by name"""
    def lookup(name):
        return session.query(Product).filter(Product.name == name).one()
    return lookup


@pytest.fixture
def address():
    return {
        "street": "Ngong Road",
        "city": "Nairobi",
        "postal_code": "00100",
        "lat": -1.3000,
        "lng": 36.7800,
    }
