"""
Pytest fixtures for backoffice engine tests.

Provides test database setup, two tenants with branches and users of every
role, catalog/stock fixtures and small helpers for building requests.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Branch, Product, ProductVariant, StockRecord, Tenant, User
from backoffice.permissions import Actor, Role
from backoffice.schemas import SaleRequest


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'EVENTS_SYNC_DELIVERY': True,
    'DB_RETRY_BACKOFF': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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


# =============================================================================
# TENANCY
# =============================================================================

@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Toko Maju", code="MAJU", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Toko Jaya", code="JAYA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def branch_a1(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Cabang Pusat", code="A1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_a2(db_session, tenant_a):
    branch = Branch(tenant_id=tenant_a.id, name="Cabang Timur", code="A2")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b1(db_session, tenant_b):
    branch = Branch(tenant_id=tenant_b.id, name="Cabang Jaya", code="B1")
    db_session.add(branch)
    db_session.commit()
    return branch


def _make_user(db_session, tenant, username, role, branch=None):
    user = User(
        tenant_id=tenant.id,
        branch_id=branch.id if branch else None,
        username=username,
        name=username.title(),
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "owner", Role.OWNER)


@pytest.fixture(scope='function')
def manager(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "manager", Role.MANAGER)


@pytest.fixture(scope='function')
def admin(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "admin", Role.ADMIN)


@pytest.fixture(scope='function')
def kasir(db_session, tenant_a, branch_a1):
    return _make_user(db_session, tenant_a, "kasir", Role.KASIR, branch_a1)


@pytest.fixture(scope='function')
def owner_b(db_session, tenant_b):
    return _make_user(db_session, tenant_b, "owner_b", Role.OWNER)


# =============================================================================
# CATALOG / STOCK
# =============================================================================

def _make_variant(db_session, tenant, product_name, sku, value=None):
    product = Product(tenant_id=tenant.id, name=product_name)
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(product_id=product.id, sku=sku, variant_name="Size" if value else None, variant_value=value)
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def shirt(db_session, tenant_a):
    """Variant in Tenant A."""
    return _make_variant(db_session, tenant_a, "Kaos Polos", "KP-M", "M")


@pytest.fixture(scope='function')
def jacket(db_session, tenant_a):
    """Second variant in Tenant A."""
    return _make_variant(db_session, tenant_a, "Jaket Denim", "JD-L", "L")


@pytest.fixture(scope='function')
def foreign_variant(db_session, tenant_b):
    """Variant in Tenant B."""
    return _make_variant(db_session, tenant_b, "Topi", "TP-01")


def put_stock(session, variant, branch, quantity, price_cents=100_000):
    """Insert a stock record directly, bypassing the ledger."""
    stock = StockRecord(
        variant_id=variant.id,
        branch_id=branch.id,
        quantity=quantity,
        price_cents=price_cents,
    )
    session.add(stock)
    session.commit()
    return stock


def stock_qty(session, variant, branch):
    """Fresh quantity read, or None when no record exists."""
    session.expire_all()
    stock = session.query(StockRecord).filter_by(variant_id=variant.id, branch_id=branch.id).first()
    return stock.quantity if stock else None


def actor_for(user) -> Actor:
    return Actor(
        user_id=user.id,
        role=user.role,
        tenant_id=user.tenant_id,
        branch_id=user.branch_id,
    )


def sale_request(lines, branch=None, **payment) -> SaleRequest:
    """Build a SaleRequest from (variant, quantity, price_cents) tuples."""
    payload = {
        "items": [
            {"variant_id": variant.id, "quantity": quantity, "price_cents": price}
            for variant, quantity, price in lines
        ],
        "payment_method": "CASH",
    }
    if branch is not None:
        payload["branch_id"] = branch.id
    payload.update(payment)
    return SaleRequest.from_payload(payload)


def auth_headers(user) -> dict:
    """Helper to create the upstream identity header for a user."""
    return {'X-User-Id': str(user.id)}
