"""
Pytest fixtures for VinERP backend tests.

Provides test database setup, a fake fiscal printer, entity fixtures and
test client helpers.
"""

import json

import httpx
import pytest

from vinerp import create_app
from vinerp.extensions import db
from vinerp.models import (
    AppSettings,
    BankAccount,
    CashRegister,
    Customer,
    Location,
    Product,
    ProductStock,
    Supplier,
    Unit,
    User,
)
from vinerp.permissions import ADMIN, EDIT_PRICE, PROCESS_RETURNS


class FakeFiscalDevice:
    """
    In-process stand-in for the printer bridge, served through
    httpx.MockTransport. Tests flip `mode` to simulate failures.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.mode = "ok"  # ok | timeout | refused | reject | garbage
        self.requests = []
        self._counter = 0

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.mode == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.mode == "refused":
            raise httpx.ConnectError("connection refused", request=request)

        body = json.loads(request.content)
        self.requests.append({"url": str(request.url), "body": body})

        if self.mode == "garbage":
            return httpx.Response(200, text="<html>oops</html>")
        if self.mode == "reject":
            return httpx.Response(200, json={"code": "5", "message": "Shift is closed"})

        if body["operation"] == "sale":
            self._counter += 1
            return httpx.Response(200, json={
                "code": "0",
                "message": "Success operation",
                "data": {
                    "document_id": f"DOC-{self._counter:04d}",
                    "short_document_id": f"{self._counter}",
                },
            })
        return httpx.Response(200, json={"code": "0", "message": "Success operation"})

    @property
    def last_body(self) -> dict:
        return self.requests[-1]["body"]


_fiscal = FakeFiscalDevice()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'FISCAL_DEVICE_TRANSPORT': httpx.MockTransport(_fiscal.handle),
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fiscal_device():
    _fiscal.reset()
    yield _fiscal
    _fiscal.reset()


@pytest.fixture(scope='function')
def store(db_session):
    """Primary location."""
    location = Location(name="Main Store", type="STORE", is_primary=True)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def warehouse(db_session, store):
    location = Location(name="Warehouse", type="WAREHOUSE", is_primary=False)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def settings(db_session, store):
    row = AppSettings(currency="AZN", allow_negative_stock=False, fiscal_device_ip="10.0.0.50")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def bank(db_session):
    account = BankAccount(name="Kapital Bank", account_number="AZ21NABZ00000000137010001944", initial_balance_cents=0)
    db_session.add(account)
    db_session.commit()
    return account


@pytest.fixture(scope='function')
def register(db_session, store):
    reg = CashRegister(name="Kassa 1", location_id=store.id, ip_address="10.0.0.51")
    db_session.add(reg)
    db_session.commit()
    return reg


@pytest.fixture(scope='function')
def admin(db_session):
    user = User(username="admin", first_name="Aysel", last_name="Mammadova", permissions=[ADMIN])
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session):
    """Plain cashier: can sell, cannot return, void or edit prices."""
    user = User(username="cashier", permissions=[])
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def supervisor(db_session):
    user = User(username="supervisor", permissions=[PROCESS_RETURNS, EDIT_PRICE])
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def piece_unit(db_session):
    unit = Unit(name="ədəd", short_name="pc")
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def kg_unit(db_session):
    unit = Unit(name="kq", short_name="kg")
    db_session.add(unit)
    db_session.commit()
    return unit


def make_product(session, location, *, code, name, price_cents, cost_cents=0, qty=0, unit=None, barcode=None):
    """Create a product with opening stock at one location."""
    product = Product(
        code=code,
        barcode=barcode,
        name=name,
        sales_price_cents=price_cents,
        purchase_price_cents=cost_cents,
        unit_id=unit.id if unit is not None else None,
    )
    session.add(product)
    session.flush()
    if qty:
        session.add(ProductStock(product_id=product.id, location_id=location.id, quantity=qty))
    session.commit()
    return product


@pytest.fixture(scope='function')
def water(db_session, store, piece_unit):
    return make_product(
        db_session, store,
        code="P-0001", barcode="4760000000011", name="Mineral water",
        price_cents=100, cost_cents=60, qty=50, unit=piece_unit,
    )


@pytest.fixture(scope='function')
def tomatoes(db_session, store, kg_unit):
    return make_product(
        db_session, store,
        code="P-0003", name="Tomatoes",
        price_cents=350, cost_cents=200, qty=20, unit=kg_unit,
    )


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Rashad Aliyev", type="individual", discount_rate=10.0)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def supplier(db_session):
    s = Supplier(name="Baku Wholesale")
    db_session.add(s)
    db_session.commit()
    return s


def stock_at(product_id: int, location_id: int) -> int:
    row = db.session.query(ProductStock).filter_by(product_id=product_id, location_id=location_id).first()
    return row.quantity if row is not None else 0


def user_headers(user) -> dict:
    """Helper to create X-User-Id headers."""
    return {'X-User-Id': str(user.id)}
