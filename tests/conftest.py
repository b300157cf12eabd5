import os

os.environ.setdefault("TELEMETRY_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exceptions import GatewayError
from models import Base, Product
from schemas import CheckoutSessionRequest
from services.catalog_service import CatalogService
from services.inventory_ledger import InventoryLedger
from services.order_service import OrderService
from services.reservation_store import ReservationStore

CUSTOMER = {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"}
ADDRESS = {
    "fullName": "Asha Rao",
    "addressLine1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "country": "India",
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Async Redis double holding string values with per-key expiry."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data = {}

    def _live(self, key):
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock.now >= expires_at:
            del self.data[key]
            return None
        return value

    async def set(self, key, value, ex=None):
        self.data[key] = (value, self.clock.now + ex if ex else None)
        return True

    async def get(self, key):
        return self._live(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self.data[key]
                removed += 1
        return removed

    def ttl(self, key):
        if self._live(key) is None:
            return -2
        _, expires_at = self.data[key]
        return -1 if expires_at is None else int(expires_at - self.clock.now)


class FakeGateway:
    """Payment gateway double recording sessions and serving payment attempts."""

    def __init__(self):
        self.sessions = []
        self.payments = {}
        self.fetch_calls = []
        self.fail_create = False
        self.fail_fetch = False

    async def create_session(self, amount, currency, order_id, customer, return_url, notify_url, note=None):
        if self.fail_create:
            raise GatewayError("Payment gateway create_order failed with status 500")
        self.sessions.append({
            "amount": amount,
            "currency": currency,
            "order_id": order_id,
            "customer": customer,
            "return_url": return_url,
            "notify_url": notify_url,
        })
        return {"order_id": order_id, "payment_session_id": f"session_{order_id}"}

    async def fetch_payment_status(self, order_id):
        self.fetch_calls.append(order_id)
        if self.fail_fetch:
            raise GatewayError("Payment gateway fetch_payments failed: timed out")
        return list(self.payments.get(order_id, []))

    def pay(self, order_id, status="SUCCESS", payment_id="5114910", group="upi"):
        self.payments.setdefault(order_id, []).insert(0, {
            "cf_payment_id": payment_id,
            "payment_status": status,
            "payment_group": group,
        })


class RecordingDispatcher:
    def __init__(self):
        self.confirmed = []
        self.shipped = []

    def order_confirmed(self, order):
        self.confirmed.append(order)

    def order_shipped(self, order):
        self.shipped.append(order)


def checkout_request(lines, customer=None, address=None):
    return CheckoutSessionRequest(
        customerDetails=customer or CUSTOMER,
        shippingAddress=address or ADDRESS,
        products=[{"productId": str(product_id), "quantity": quantity} for product_id, quantity in lines],
    )


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def products(db):
    """Frame @1050, motor @525, ESC @3150 (GST inclusive)."""
    items = [
        Product(id=1, name="Racing Frame", price=1050, stock=10, category="Frames", images=["/img/frame.jpg"]),
        Product(id=2, name="Brushless Motor", price=525, stock=10, category="Motors", images=[]),
        Product(id=3, name="4-in-1 ESC", price=3150, stock=5, category="Electronics", images=None),
    ]
    db.add_all(items)
    db.commit()
    return {product.id: product for product in items}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture()
def reservation_store(fake_redis):
    return ReservationStore(fake_redis, ttl_seconds=3600)


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture()
def order_service(reservation_store, gateway, dispatcher):
    return OrderService(CatalogService(), InventoryLedger(), reservation_store, gateway, dispatcher)


def stock_of(session_factory, product_id):
    session = session_factory()
    try:
        return session.get(Product, product_id).stock
    finally:
        session.close()
