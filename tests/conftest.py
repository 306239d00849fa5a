import os
import tempfile
from datetime import datetime, timedelta, timezone

# The engine is built at import time, so point it at a throwaway file first.
_DB_DIR = tempfile.mkdtemp(prefix="srs-bookings-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"

import pytest
from fastapi.testclient import TestClient

from src.application.booking_service import BookingService
from src.domain.exceptions import PaymentGatewayError
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import SessionLocal, engine
from src.infrastructure.payments.gateway import PaymentGateway, PaymentOrder
from src.infrastructure.repositories.seat_repository import SeatRepository

VALID_SIGNATURE = "valid-signature"


class FakeGateway(PaymentGateway):
    """In-memory stand-in for Razorpay."""

    key_id = "rzp_test_fake"

    def __init__(self):
        self.orders: dict[str, PaymentOrder] = {}
        self.refunds: list[tuple[str, int]] = []
        self.fail_refunds = False

    def create_order(self, amount: int, reference: str) -> PaymentOrder:
        order = PaymentOrder(
            order_id=f"order_{len(self.orders) + 1}",
            amount=amount,
            currency="INR",
        )
        self.orders[order.order_id] = order
        return order

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return order_id in self.orders and signature == VALID_SIGNATURE

    def refund(self, payment_id: str, amount: int) -> str:
        if self.fail_refunds:
            raise PaymentGatewayError("Refund service unavailable")
        self.refunds.append((payment_id, amount))
        return f"rfnd_{len(self.refunds)}"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service(db, gateway):
    return BookingService(db, gateway=gateway)


@pytest.fixture
def make_event(session_factory):
    def _make_event(**overrides):
        start = datetime.now(timezone.utc) + timedelta(days=7)
        values = {
            "title": "Annual Dinner",
            "location": "Community Hall",
            "start_date": start,
            "end_date": start + timedelta(hours=4),
            "max_capacity": 10,
            "user_price": 1000,
            "member_price": 800,
            "guest_price": 1200,
            "kid_price": 500,
        }
        values.update(overrides)
        session = session_factory()
        try:
            event = SeatRepository(session).create_event(**values)
            session.commit()
            return event
        finally:
            session.close()

    return _make_event


@pytest.fixture
def event(make_event):
    return make_event()


def booked_seats(session_factory, event_id: str) -> int:
    session = session_factory()
    try:
        return SeatRepository(session).require_event(event_id).booked_seats
    finally:
        session.close()


@pytest.fixture
def seats(session_factory):
    return lambda event_id: booked_seats(session_factory, event_id)


@pytest.fixture
def client(gateway):
    from src.api.routes.routes import get_gateway, get_optional_gateway
    from src.main import app

    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_optional_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
