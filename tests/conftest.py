import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from helpers import CRON_SECRET, JWT_SECRET, KEY_ID, KEY_SECRET, WEBHOOK_SECRET
from trulybot.db import get_db
from trulybot.main import create_app
from trulybot.models import Base
from trulybot.rate_limit import MemoryCounterStore, RateLimiter


@pytest.fixture(autouse=True)
def env(monkeypatch):
    monkeypatch.setenv("RAZORPAY_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("RAZORPAY_KEY_ID", KEY_ID)
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", KEY_SECRET)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("SESSION_SECRET", "session-test-secret")
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class FakeGateway:
    """Stands in for RazorpayGateway; records calls, never touches the network."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        self.fetch_error = None

    def create_order(self, amount, currency, receipt, notes):
        order = {
            "id": f"order_test_{len(self.orders) + 1}",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
            "status": "created",
        }
        self.orders.append(order)
        return order

    def add_payment(self, payment_id, order_id, amount, status="captured", currency="INR"):
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "amount": amount,
            "currency": currency,
            "status": status,
        }

    def fetch_payment(self, payment_id):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.payments[payment_id]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def rate_limiter():
    return RateLimiter(MemoryCounterStore())


@pytest.fixture
def app(session_factory, gateway, rate_limiter):
    app = create_app(rate_limiter=rate_limiter, gateway_factory=lambda: gateway)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)
