import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from app import create_app
from config import TestConfig
from models import db
from models.availability import Availability
from models.booking import Booking
from models.location import Location
from models.user import User
from services import capacity
from services.errors import CapacityExceededError, DependencyError, NotFoundError, ValidationError
from utils.seed import seed_roles

DAY = date(2025, 6, 11)
T9 = datetime(2025, 6, 10, 23, 0)
T10 = datetime(2025, 6, 11, 0, 0)
T11 = datetime(2025, 6, 11, 1, 0)
BEFORE = datetime(2025, 5, 1, 0, 0)


def _book(user, loc, start=T9, end=T10, **kwargs):
    kwargs.setdefault("now", BEFORE)
    return capacity.create_booking(loc.id, start, end, user.id, **kwargs)


def _flags(loc):
    return [r.is_booked for r in Availability.query.filter_by(location_id=loc.id).order_by(Availability.start_time).all()]


def test_fills_to_capacity_then_rejects(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00", capacity=2)
    a, b, c = make_user(), make_user(), make_user()

    first, err = _book(a, loc)
    assert err is None and first.id
    assert _flags(loc) == [False, False]

    _, err = _book(b, loc)
    assert err is None
    assert _flags(loc) == [True, True]

    booking, err = _book(c, loc)
    assert booking is None
    assert isinstance(err, CapacityExceededError)
    assert err.details["max_capacity"] == 2
    assert Booking.query.count() == 2


def test_release_flips_flag_back(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00", capacity=1)
    booking, _ = _book(make_user(), loc)
    booking_id = booking.id
    assert _flags(loc) == [True, True]

    snapshot, err = capacity.release_booking(booking_id)
    assert err is None
    assert snapshot["id"] == booking_id
    assert snapshot["credit_cost"] == Decimal("149.99")
    assert Booking.query.count() == 0
    assert _flags(loc) == [False, False]


def test_release_missing_booking(app):
    _, err = capacity.release_booking(12345)
    assert isinstance(err, NotFoundError)


def test_capacity_is_smallest_row_capacity(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "09:30", capacity=5)
    make_slots(loc, DAY, "09:30", "10:00", capacity=1)

    _, err = _book(make_user(), loc)
    assert err is None
    _, err = _book(make_user(), loc)
    assert isinstance(err, CapacityExceededError)


def test_full_session_marks_only_its_rows(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "11:00", capacity=1)
    _book(make_user(), loc, T9, T10)
    assert _flags(loc) == [True, True, False, False]


def test_range_must_be_covered(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "09:30")
    make_slots(loc, DAY, "10:00", "11:00")
    user = make_user()

    _, err = _book(user, loc, T9, T10)
    assert isinstance(err, NotFoundError)
    _, err = _book(user, loc, T9, T9 + timedelta(minutes=45))
    assert isinstance(err, NotFoundError)
    _, err = _book(user, loc, T10, T11)
    assert err is None


def test_deleted_location_is_not_bookable(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00")
    loc.is_deleted = True
    db.session.commit()
    _, err = _book(make_user(), loc)
    assert isinstance(err, NotFoundError)


def test_student_cannot_take_two_seats(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00")
    user = make_user()
    _book(user, loc)
    _, err = _book(user, loc)
    assert isinstance(err, ValidationError)
    assert Booking.query.count() == 1
    assert _flags(loc) == [False, False]


def test_unknown_student_is_not_found(make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00")
    _, err = capacity.create_booking(loc.id, T9, T10, 9999, now=BEFORE)
    assert isinstance(err, NotFoundError)
    assert err.details == {"user_id": 9999}
    assert Booking.query.count() == 0


def test_only_the_seat_constraint_means_duplicate_seat():
    def failure(message):
        return IntegrityError("INSERT INTO bookings", {}, Exception(message))

    assert capacity._is_duplicate_seat(failure(
        "UNIQUE constraint failed: bookings.location_id, bookings.start_time, bookings.end_time, bookings.user_id"
    ))
    assert capacity._is_duplicate_seat(failure(
        'duplicate key value violates unique constraint "uq_booking_session_user"'
    ))
    assert not capacity._is_duplicate_seat(failure("FOREIGN KEY constraint failed"))
    assert not capacity._is_duplicate_seat(failure(
        'insert or update on table "bookings" violates foreign key constraint "bookings_user_id_fkey"'
    ))


def test_advance_notice(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00")
    user = make_user()

    _, err = _book(user, loc, now=T9 - timedelta(days=6))
    assert isinstance(err, ValidationError)
    _, err = _book(user, loc, now=T9 + timedelta(hours=1))
    assert isinstance(err, ValidationError)
    _, err = _book(user, loc, now=None, enforce_advance=False)
    assert err is None


def test_input_validation(make_user, make_location, make_slots):
    loc = make_location()
    user = make_user()
    _, err = capacity.create_booking(loc.id, T10, T9, user.id, now=BEFORE)
    assert isinstance(err, ValidationError)
    _, err = capacity.create_booking(loc.id, "09:00", T10, user.id, now=BEFORE)
    assert isinstance(err, ValidationError)
    _, err = capacity.create_booking(None, T9, T10, user.id, now=BEFORE)
    assert isinstance(err, ValidationError)


def test_cost_defaults_to_service_price(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00", service="Stroke Clinic")
    booking, _ = _book(make_user(), loc, service_name="Stroke Clinic")
    assert booking.credit_cost == Decimal("99.99")

    other, _ = _book(make_user(), loc, credit_cost="15")
    assert other.credit_cost == Decimal("15.00")
    assert other.service_name == "Stroke Clinic"


def test_new_seat_joins_existing_coach(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00")
    coach = make_user(("COACH",))
    _book(make_user(), loc, coach_id=coach.id)
    second, _ = _book(make_user(), loc)
    assert second.coach_id == coach.id


def test_occupancy_helper(make_user, make_location, make_slots):
    loc = make_location()
    make_slots(loc, DAY, "09:00", "10:00", capacity=4)
    _book(make_user(), loc)
    assert capacity.session_occupancy(loc.id, T9, T10) == (1, 4)
    assert capacity.session_occupancy(loc.id, T9, T11) == (0, None)


@pytest.fixture
def file_app(tmp_path):
    config = type("FileConfig", (TestConfig,), {
        "SQLALCHEMY_DATABASE_URI": "sqlite:///" + str(tmp_path / "capacity.db"),
    })
    app = create_app(config)
    with app.app_context():
        db.create_all()
        seed_roles()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def test_concurrent_bookings_never_exceed_capacity(file_app):
    capacity_k, callers = 3, 8
    with file_app.app_context():
        loc = Location(name="Centre Court")
        db.session.add(loc)
        users = [User(email=f"s{i}@example.com", password_hash="x") for i in range(callers)]
        db.session.add_all(users)
        db.session.flush()
        db.session.add_all([
            Availability(location_id=loc.id, start_time=T9, end_time=T9 + timedelta(minutes=30), max_capacity=capacity_k),
            Availability(location_id=loc.id, start_time=T9 + timedelta(minutes=30), end_time=T10, max_capacity=capacity_k),
        ])
        db.session.commit()
        loc_id, user_ids = loc.id, [u.id for u in users]

    barrier = threading.Barrier(callers)
    outcomes = []
    lock = threading.Lock()

    def worker(user_id):
        with file_app.app_context():
            barrier.wait()
            booking, err = capacity.create_booking(loc_id, T9, T10, user_id, now=BEFORE)
            with lock:
                outcomes.append((user_id, booking.id if booking else None, err))
            db.session.remove()

    threads = [threading.Thread(target=worker, args=(uid,)) for uid in user_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(outcomes) == callers
    winners = [o for o in outcomes if o[2] is None]
    for _, _, err in outcomes:
        assert err is None or isinstance(err, (CapacityExceededError, DependencyError))

    with file_app.app_context():
        held = {b.user_id for b in Booking.query.filter_by(location_id=loc_id).all()}
        assert len(held) <= capacity_k
        assert held == {o[0] for o in winners}
        rows = Availability.query.filter_by(location_id=loc_id).all()
        assert all(r.is_booked == (len(held) >= capacity_k) for r in rows)
