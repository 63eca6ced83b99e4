import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import fnmatch
from datetime import date, datetime, time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from consult_booking.app import create_app
from consult_booking.app.auth import create_access_token
from consult_booking.app.dependencies import get_db, get_notifier, get_now, get_payment_gateway, get_redis_client
from consult_booking.app.models import Base, Doctor, User, WeeklyScheduleRule

# Monday morning; NEXT_MONDAY is a week later
NOW = datetime(2026, 10, 26, 8, 0)
NEXT_MONDAY = date(2026, 11, 2)


class FakeRedis:
    """Dict-backed stand-in for the handful of Redis calls the app makes."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def scan_iter(self, match=None):
        return [key for key in list(self.store) if match is None or fnmatch.fnmatch(key, match)]


class RecordingPayments:
    def __init__(self):
        self.refunds = []

    def refund(self, booking, amount_cents):
        self.refunds.append((booking.id, amount_cents))


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def booking_confirmed(self, booking):
        self.events.append(("confirmed", booking.id, booking.status))

    def booking_cancelled(self, booking):
        self.events.append(("cancelled", booking.id, booking.status))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache():
    return FakeRedis()


@pytest.fixture
def payments():
    return RecordingPayments()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(session_factory, cache, payments, notifier):
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = lambda: cache
    app.dependency_overrides[get_now] = lambda: NOW
    app.dependency_overrides[get_payment_gateway] = lambda: payments
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role):
        counter["n"] += 1
        user = User(name=f"Test {role.capitalize()} {counter['n']}",
                    email=f"{role}{counter['n']}@example.com", role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_doctor(db, make_user):
    def _make_doctor(**overrides):
        user = make_user("doctor")
        fields = {
            "cancellation_policy": "moderate",
            "consultation_types": ["in_person", "video"],
            "consultation_fee_cents": 10000,
            "video_consultation_fee_cents": 8000,
        }
        fields.update(overrides)
        doctor = Doctor(user_id=user.id, **fields)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def add_rule(db):
    def _add_rule(doctor, day_of_week=1, start=time(9, 0), end=time(12, 0), duration=30, consultation_type="both"):
        rule = WeeklyScheduleRule(doctor_id=doctor.id, day_of_week=day_of_week, start_time=start, end_time=end,
                                  slot_duration_minutes=duration, consultation_type=consultation_type)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _add_rule


@pytest.fixture
def doctor(make_doctor, add_rule):
    """Doctor seeing patients Monday 09:00-12:00 in 30 minute slots."""
    doctor = make_doctor()
    add_rule(doctor)
    return doctor


@pytest.fixture
def patient(make_user):
    return make_user("patient")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def next_monday():
    return NEXT_MONDAY
