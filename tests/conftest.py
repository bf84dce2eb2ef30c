import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from schedule_portal import main
from schedule_portal.graphql_client import BACKEND_CB
from schedule_portal.feed import FeedRegistry
from schedule_portal.main import app, get_bookings_client, get_db
from schedule_portal.realtime import SubscriptionRegistry
from schedule_portal.models import Base
from schedule_portal.schemas import Booking, BookingStatus, BookingStatusResult


def _make_booking(**overrides):
    data = {
        "id": "b1",
        "type": "mentorship",
        "date": "2026-10-19",
        "time": "10:00",
        "status": "pending",
        "user": {"id": "s1", "username": "Jean"},
        "mentor": {"id": "t1", "username": "Ada"},
    }
    data.update(overrides)
    return Booking.model_validate(data)


class FakeBookingsClient:
    def __init__(self):
        self.bookings = []
        self.all = []
        self.updates = []
        self.created = []
        self.fetches = 0
        self.error = None

    def my_bookings(self):
        self.fetches += 1
        if self.error:
            raise self.error
        return list(self.bookings)

    def all_bookings(self):
        if self.error:
            raise self.error
        return list(self.all)

    def update_booking_status(self, update):
        if self.error:
            raise self.error
        self.updates.append(update.to_variables())
        return BookingStatusResult(id=update.id, status=update.status, meeting_link=update.meeting_link)

    def create_booking(self, payload):
        if self.error:
            raise self.error
        variables = payload.to_variables()
        self.created.append(variables)
        return BookingStatusResult(id=f"new{len(self.created)}", status=BookingStatus.PENDING,
                                   meeting_link=variables.get("meetingLink"))


@pytest.fixture
def make_booking():
    return _make_booking


@pytest.fixture
def fake_backend():
    return FakeBookingsClient()


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    BACKEND_CB.close()
    monkeypatch.setattr(main, "FEEDS", FeedRegistry())
    monkeypatch.setattr(main, "SUBSCRIPTIONS", SubscriptionRegistry())
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client(fake_backend):
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bookings_client] = lambda: fake_backend
    yield TestClient(app)
    engine.dispose()
