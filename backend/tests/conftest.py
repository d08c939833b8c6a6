"""
Pytest fixtures for TradeLedger backend tests.

Provides test database setup, seeded accounts, the test client, and small
factories for units, customers, invoices and purchase orders.
"""

import itertools

import pytest
from tradeledger import create_app
from tradeledger.extensions import db
from tradeledger.services import accounting_service, inventory_service, invoice_service, purchasing_service


ACTOR = "tester"

_serials = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF_SECONDS': 0.01,
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
    """Create fresh database for each test, with the chart of accounts seeded."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        accounting_service.ensure_default_accounts(db.session)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    Application on a file-backed SQLite database.

    Needed by the threaded tests: every thread gets its own connection, so
    lock and version conflicts really happen.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'tradeledger-test.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 10,
        'DB_RETRY_BACKOFF_SECONDS': 0.01,
    })
    with app.app_context():
        db.create_all()
        accounting_service.ensure_default_accounts(db.session)
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def make_unit(db_session):
    """Factory: AVAILABLE unit with a unique serial number."""
    def _make(purchase_price_cents=50000, selling_price_cents=100000, **kwargs):
        serial = kwargs.pop("serial_number", None) or f"SN-{next(_serials):06d}"
        return inventory_service.create_unit(
            db_session,
            serial_number=serial,
            actor=ACTOR,
            purchase_price_cents=purchase_price_cents,
            selling_price_cents=selling_price_cents,
            **kwargs,
        )
    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    """A customer with no balance."""
    return invoice_service.create_customer(
        db_session, name="Jane Buyer", actor=ACTOR, email="jane@example.com", phone="555-0100"
    )


@pytest.fixture(scope='function')
def make_invoice(db_session, customer, make_unit):
    """Factory: SENT invoice reserving one unit per price in prices_cents."""
    def _make(prices_cents=(120000,), **kwargs):
        units = [make_unit(selling_price_cents=price) for price in prices_cents]
        invoice = invoice_service.create_invoice(
            db_session,
            customer_id=kwargs.pop("customer_id", customer.id),
            lines=[{"unit_id": u.id, "unit_price_cents": u.selling_price_cents} for u in units],
            actor=ACTOR,
            **kwargs,
        )
        return invoice, units
    return _make


@pytest.fixture(scope='function')
def vendor(db_session):
    return purchasing_service.create_vendor(db_session, name="Acme Supply", actor=ACTOR, code="ACME")


@pytest.fixture(scope='function')
def purchase_order(db_session, vendor):
    """OPEN purchase order bringing in two new ORDERED units."""
    return purchasing_service.create_purchase_order(
        db_session,
        vendor_id=vendor.id,
        actor=ACTOR,
        lines=[
            {"serial_number": "PO-UNIT-1", "unit_cost_cents": 30000, "selling_price_cents": 60000},
            {"serial_number": "PO-UNIT-2", "unit_cost_cents": 20000, "selling_price_cents": 45000},
        ],
    )
