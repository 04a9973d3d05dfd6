from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.availability import Availability
from models.booking import Booking
from models.location import Location
from models.user import Role, User
from security.password import hash_password
from services import timezone as tz
from services.identity import Actor
from services.wallet import WalletLedger
from utils.seed import seed_roles

PASSWORD = "correct horse battery"


class FakeLedger(WalletLedger):
    """Records credits; ``fail`` makes every credit report an error."""

    def __init__(self):
        self.credits = []
        self.keys = set()
        self.fail = False

    def credit_balance(self, user_id, amount, idempotency_key):
        if self.fail:
            return False, None
        if idempotency_key in self.keys:
            return True, None
        self.keys.add(idempotency_key)
        self.credits.append((user_id, Decimal(str(amount)), idempotency_key))
        return True, None

    def get_balance(self, user_id):
        return sum((amount for uid, amount, _ in self.credits if uid == user_id), Decimal("0.00"))


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.explode = False

    def notify_cancellation(self, details):
        if self.explode:
            raise RuntimeError("smtp down")
        self.sent.append(details)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    app.extensions["wallet_ledger"] = FakeLedger()
    app.extensions["notifier"] = FakeNotifier()
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ledger(app):
    return app.extensions["wallet_ledger"]


@pytest.fixture
def notifier(app):
    return app.extensions["notifier"]


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(roles=("STUDENT",), email=None, first_name=None, last_name=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(PASSWORD),
            first_name=first_name,
            last_name=last_name,
        )
        user.roles = Role.query.filter(Role.name.in_(roles)).all()
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_location(app):
    def _make(name="Centre Court", address=None):
        location = Location(name=name, address=address)
        db.session.add(location)
        db.session.commit()
        return location

    return _make


@pytest.fixture
def make_slots(app):
    """30-minute availability rows on a local date between two wall times."""

    def _make(location, day: date, start="09:00", end="11:00", capacity=10, service=None):
        rows = []
        start_min = int(start[:2]) * 60 + int(start[3:])
        end_min = int(end[:2]) * 60 + int(end[3:])
        for minute in range(start_min, end_min, 30):
            row = Availability(
                location_id=location.id,
                start_time=tz.local_datetime_to_utc(day, minute // 60, minute % 60),
                end_time=tz.local_datetime_to_utc(day, (minute + 30) // 60, (minute + 30) % 60),
                service_name=service,
                max_capacity=capacity,
                is_booked=False,
            )
            db.session.add(row)
            rows.append(row)
        db.session.commit()
        return rows

    return _make


@pytest.fixture
def make_booking(app):
    """Inserts a booking row directly, bypassing the capacity gate."""

    def _make(user, location, start, end, coach=None, cost="15.00", service=None):
        booking = Booking(
            location_id=location.id,
            user_id=user.id,
            coach_id=coach.id if coach else None,
            start_time=start,
            end_time=end,
            service_name=service,
            credit_cost=Decimal(cost),
        )
        db.session.add(booking)
        db.session.commit()
        return booking

    return _make


def actor_for(user) -> Actor:
    return Actor(user_id=user.id, roles=frozenset(user.role_names))


def login(client, user):
    resp = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
    assert resp.status_code == 200
    return resp
