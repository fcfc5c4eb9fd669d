"""
Pytest fixtures for PharmaPOS backend tests.

Provides test database setup, tenant/branch/product fixtures, and test client.
"""

import pytest
from pharmapos import create_app
from pharmapos.extensions import db
from pharmapos.models import Tenant, Branch, Product, InventoryRecord, Sale
from pharmapos.services.payment_gateway import get_payment_gateway
from pharmapos.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_PROCESSING_DELAY_SECONDS': 0,
        'MOBILE_MONEY_PROVIDERS': ['mtn', 'airtel', 'zamtel'],
        'MOBILE_MONEY_SIMULATED_STATUS': 'completed',
        'MOBILE_MONEY_HTTP_BASE_URL': None,
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

        # Fresh simulated providers per test
        app.extensions.pop('payment_gateway', None)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(db_session):
    """The app's payment gateway (simulated mobile money)."""
    return get_payment_gateway()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first pharmacy business)."""
    tenant = Tenant(name="Tenant A - Lusaka Pharmacy", code="LUSAKA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second pharmacy business)."""
    tenant = Tenant(name="Tenant B - Copperbelt Chemists", code="COPPER", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Cairo Road", code="A1", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session, tenant_b):
    branch = Branch(tenant_id=tenant_b.id, name="Kitwe Central", code="B1", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


def make_product(session, tenant, sku, name, price_cents=1000):
    product = Product(
        tenant_id=tenant.id,
        sku=sku,
        name=name,
        unit_price_cents=price_cents,
        is_active=True,
    )
    session.add(product)
    session.commit()
    return product


def stock(session, branch, product, quantity, reorder_level=0):
    record = InventoryRecord(
        branch_id=branch.id,
        product_id=product.id,
        quantity_on_hand=quantity,
        reorder_level=reorder_level,
    )
    session.add(record)
    session.commit()
    return record


@pytest.fixture(scope='function')
def amoxicillin(db_session, tenant_a):
    """Product P1."""
    return make_product(db_session, tenant_a, "AMX-500", "Amoxicillin 500mg", 450)


@pytest.fixture(scope='function')
def paracetamol(db_session, tenant_a):
    """Product P2."""
    return make_product(db_session, tenant_a, "PCM-500", "Paracetamol 500mg", 120)


@pytest.fixture(scope='function')
def stocked_branch(db_session, branch_a, amoxicillin, paracetamol):
    """Branch A holding 10 x P1 and 5 x P2."""
    stock(db_session, branch_a, amoxicillin, 10)
    stock(db_session, branch_a, paracetamol, 5)
    return branch_a


def context_headers(tenant_id, user_id=1, branch_id=None) -> dict:
    """Helper to build caller-context headers."""
    headers = {'X-Tenant-Id': str(tenant_id), 'X-User-Id': str(user_id)}
    if branch_id is not None:
        headers['X-Branch-Id'] = str(branch_id)
    return headers


def quantity_of(session, branch, product) -> int:
    record = session.query(InventoryRecord).filter_by(
        branch_id=branch.id, product_id=product.id
    ).one()
    session.refresh(record)
    return record.quantity_on_hand


def make_sale(session, branch, total_cents, number="SALE20260001"):
    """A bare pending sale (no items), for payment-side tests."""
    sale = Sale(
        sale_number=number,
        branch_id=branch.id,
        cashier_id=1,
        sale_date=utcnow(),
        subtotal_cents=total_cents,
        total_cents=total_cents,
    )
    session.add(sale)
    session.commit()
    return sale
