"""
Pytest fixtures for workshop backend tests.

Provides the app on an in-memory database, a per-test table wipe with a
fixed clock, staff actors and a small catalog.
"""

from datetime import datetime

import pytest
from workshop import create_app
from workshop.extensions import db
from workshop.models import User, InventoryItem, StockMovement
from workshop.actor import Actor
from workshop.time_utils import set_clock
from workshop.services import catalog_service, customer_service, jobcard_service

FIXED_NOW = datetime(2026, 3, 15, 10, 30, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_RATE': '8',
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
def clock():
    """Pin utcnow(); tests may reassign clock.now to move time."""
    class _Clock:
        now = FIXED_NOW

    c = _Clock()
    set_clock(lambda: c.now)
    yield c
    set_clock(None)


@pytest.fixture(scope='function')
def db_session(app, clock):
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
def admin_user(db_session):
    user = User(name="Aisha Admin", email="admin@workshop.test", role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def tech_user(db_session):
    user = User(name="Hassan Tech", email="tech@workshop.test", role="technician")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture(scope='function')
def tech(tech_user):
    return Actor.from_user(tech_user)


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer({"name": "Ahmed Ali", "phone": "7771234"})


@pytest.fixture(scope='function')
def vehicle(customer):
    return customer_service.create_vehicle({
        "customer_id": customer.id,
        "registration_number": " p-1234 ",
        "make": "Toyota",
        "model": "Hilux",
    })


@pytest.fixture(scope='function')
def item(db_session, admin):
    """currentStock=10, cost 5.00, price 8.00."""
    return catalog_service.create_item({
        "sku": "OIL-5W30",
        "name": "Engine Oil 5W-30",
        "cost_price_cents": 500,
        "selling_price_cents": 800,
        "current_stock": 10,
        "reorder_level": 3,
    }, actor=admin)


@pytest.fixture(scope='function')
def filter_item(db_session, admin):
    return catalog_service.create_item({
        "sku": "FLT-OIL",
        "name": "Oil Filter",
        "cost_price_cents": 300,
        "selling_price_cents": 600,
        "current_stock": 5,
        "reorder_level": 2,
        "barcode": "4900000000012",
    }, actor=admin)


@pytest.fixture(scope='function')
def service(db_session):
    return catalog_service.create_service({"name": "Oil Change", "base_price_cents": 1500})


@pytest.fixture(scope='function')
def job_card(customer, vehicle, tech):
    return jobcard_service.create_job_card(
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        odometer=45000,
        actor=tech,
    )


def ledger_sum(item_id: int) -> int:
    """Signed movement total for an item, straight from the table."""
    return sum(m.quantity for m in db.session.query(StockMovement).filter_by(item_id=item_id))


def stock_of(item_id: int) -> int:
    db.session.expire_all()
    return db.session.get(InventoryItem, item_id).current_stock
