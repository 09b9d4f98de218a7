"""
Pytest fixtures for stockbook backend tests.

Provides test database setup, company/item/batch fixtures, and test client.
"""

import pytest
from stockbook import create_app
from stockbook.extensions import db
from stockbook.models import Company, Item, Location, StockBatch


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'USD_TO_SRD_RATE': 5.5,
        'PERSISTENCE_RETRY_ATTEMPTS': 3,
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
def cli_runner(app):
    return app.test_cli_runner()


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
def company(db_session):
    """Company with 1,000.00 SRD and 500.00 USD on hand."""
    company = Company(
        name="Acme Trading",
        cash_balance_srd_cents=100_000,
        cash_balance_usd_cents=50_000,
    )
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_company(db_session):
    company = Company(name="Beta Imports", cash_balance_srd_cents=0, cash_balance_usd_cents=0)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def warehouse(db_session, company):
    location = Location(company_id=company.id, name="Warehouse")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def shop(db_session, company):
    location = Location(company_id=company.id, name="Shop")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def make_item(db_session, company):
    """Factory for plain (non-batch) items; defaults to Arrived stock."""
    def _make(**overrides):
        fields = {
            "company_id": company.id,
            "name": "Wireless Mouse",
            "status": "Arrived",
            "quantity_in_stock": 5,
            "cost_per_unit_usd_cents": 1000,
            "freight_cost_usd_cents": 0,
            "selling_price_srd_cents": 10_000,
            "use_batch_system": False,
        }
        fields.update(overrides)
        item = Item(**fields)
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def item(make_item):
    return make_item()


@pytest.fixture(scope='function')
def batch_item(db_session, company, warehouse, shop):
    """
    Batch-tracked item with two lots: 3 units in the warehouse (older) and
    4 units in the shop (newer).
    """
    item = Item(
        company_id=company.id,
        name="USB Hub",
        status="Arrived",
        quantity_in_stock=7,
        cost_per_unit_usd_cents=800,
        freight_cost_usd_cents=0,
        selling_price_srd_cents=6_000,
        use_batch_system=True,
    )
    db_session.add(item)
    db_session.flush()

    db_session.add(StockBatch(
        item_id=item.id, quantity=3, original_quantity=3, status="Arrived",
        cost_per_unit_usd_cents=800, location_id=warehouse.id,
    ))
    db_session.flush()
    db_session.add(StockBatch(
        item_id=item.id, quantity=4, original_quantity=4, status="Arrived",
        cost_per_unit_usd_cents=800, location_id=shop.id,
    ))
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def batch_quantities(db_session):
    """Current (location_id, quantity) pairs of an item's batches, oldest first."""
    def _quantities(item_id):
        rows = (
            db_session.query(StockBatch)
            .filter_by(item_id=item_id)
            .order_by(StockBatch.id.asc())
            .all()
        )
        return [(b.location_id, b.quantity) for b in rows]
    return _quantities
