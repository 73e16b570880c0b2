"""
Pytest fixtures for Kasir backend tests.

Provides test database setup, one user per role with session tokens, a small
catalog, and a fake payment gateway installed in place of Xendit.
"""

import pytest

from kasir import create_app
from kasir.extensions import db
from kasir.models import User, Category, Product
from kasir.models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER
from kasir.services.auth_service import hash_password
from kasir.services.payment_gateway import PaymentGateway, Invoice, GatewayError
from kasir.services import session_service


TEST_PASSWORD = "Password123!"

# bcrypt at cost 12 is slow; hash once per run
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


class FakeGateway(PaymentGateway):
    """
    In-memory stand-in for the invoice API.

    `statuses` maps invoice id -> status returned by get_invoice. Set `error`
    to make every call raise it.
    """

    def __init__(self):
        self.created = []
        self.lookups = []
        self.statuses = {}
        self.error = None
        self._counter = 0

    def create_invoice(self, *, amount, currency, external_id, payer_email, description,
                       success_url, failure_url, webhook_url, duration):
        if self.error:
            raise self.error
        self._counter += 1
        invoice_id = f"inv_{self._counter:04d}"
        self.created.append({
            "id": invoice_id,
            "amount": amount,
            "currency": currency,
            "external_id": external_id,
            "payer_email": payer_email,
            "description": description,
            "success_url": success_url,
            "failure_url": failure_url,
            "duration": duration,
        })
        self.statuses[invoice_id] = "PENDING"
        return Invoice(
            id=invoice_id,
            url=f"https://checkout.example.test/{invoice_id}",
            status="PENDING",
            external_id=external_id,
        )

    def get_invoice(self, invoice_id):
        self.lookups.append(invoice_id)
        if self.error:
            raise self.error
        if invoice_id not in self.statuses:
            raise GatewayError("Invoice not found", status_code=404, details={"error_code": "INVOICE_NOT_FOUND_ERROR"})
        return Invoice(
            id=invoice_id,
            url=f"https://checkout.example.test/{invoice_id}",
            status=self.statuses[invoice_id],
            payment_channel="QRIS",
        )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'XENDIT_SECRET_KEY': 'xnd_development_test',
        'XENDIT_CALLBACK_TOKEN': '',
        'APP_BASE_URL': 'http://kasir.test',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh data for each test; schema is kept."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def gateway(app):
    """Replace the real gateway for the duration of a test."""
    original = app.extensions["payment_gateway"]
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = original


def _make_user(db_session, name, email, role):
    user = User(name=name, email=email, password_hash=_PASSWORD_HASH, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "Admin", "admin@kasir.test", ROLE_ADMIN)


@pytest.fixture
def manager_user(db_session):
    return _make_user(db_session, "Manager", "manager@kasir.test", ROLE_MANAGER)


@pytest.fixture
def cashier_user(db_session):
    return _make_user(db_session, "Cashier", "cashier@kasir.test", ROLE_CASHIER)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user: User) -> dict:
    _, token = session_service.create_session(user_id=user.id)
    return auth_headers(token)


@pytest.fixture
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture
def manager_headers(manager_user):
    return headers_for(manager_user)


@pytest.fixture
def cashier_headers(cashier_user):
    return headers_for(cashier_user)


@pytest.fixture
def category(db_session):
    category = Category(name="Beverages", description="Drinks")
    db_session.add(category)
    db_session.commit()
    return category


def make_product(db_session, category, *, sku, name, price, stock=0, min_stock=5, barcode=None, cost=0):
    product = Product(
        category_id=category.id,
        sku=sku,
        name=name,
        barcode=barcode,
        price=price,
        cost=cost,
        stock=stock,
        min_stock=min_stock,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def coffee(db_session, category):
    """Kopi Susu: Rp 15.000, 10 in stock, min 5."""
    return make_product(db_session, category, sku="BEV-001", name="Kopi Susu", price=15000,
                        stock=10, min_stock=5, barcode="8991234500011", cost=9000)


@pytest.fixture
def tea(db_session, category):
    """Teh Manis: Rp 5.000, 20 in stock, min 5."""
    return make_product(db_session, category, sku="BEV-002", name="Teh Manis", price=5000,
                        stock=20, min_stock=5, barcode="8991234500028", cost=2500)
