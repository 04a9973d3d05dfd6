import itertools
from datetime import date, datetime
from decimal import Decimal

from services.errors import NotFoundError, ValidationError
from services.sessions import UNKNOWN, assign_coach, display_name, group_into_sessions, list_sessions
from services import timezone as tz
from models import db
from models.booking import Booking

T9 = datetime(2025, 6, 10, 23, 0)
T10 = datetime(2025, 6, 11, 0, 0)
T11 = datetime(2025, 6, 11, 1, 0)


def _b(id, user_id, start=T9, end=T10, location_id=1, coach_id=None, cost="15.00"):
    return {"id": id, "user_id": user_id, "location_id": location_id, "start_time": start,
            "end_time": end, "coach_id": coach_id, "credit_cost": cost}


PROFILES = {
    10: {"first_name": "Ana", "last_name": "Ivanovic", "email": "ana@example.com"},
    11: {"first_name": None, "last_name": None, "email": "ben@example.com"},
    20: {"first_name": "Coach", "last_name": "Carter", "email": "carter@example.com"},
}


def test_display_name_fallbacks():
    assert display_name(PROFILES[10]) == "Ana Ivanovic"
    assert display_name(PROFILES[11]) == "ben@example.com"
    assert display_name({}) == UNKNOWN
    assert display_name(None) == UNKNOWN


def test_groups_by_location_start_and_end():
    bookings = [
        _b(1, 10, coach_id=20),
        _b(2, 11),
        _b(3, 10, start=T10, end=T11),
        _b(4, 11, location_id=2),
    ]
    sessions = group_into_sessions(bookings, PROFILES, {1: "Centre Court", 2: "Park"})
    assert [s.key for s in sessions] == [(1, T9, T10), (2, T9, T10), (1, T10, T11)]

    first = sessions[0]
    assert first.student_ids == [10, 11]
    assert first.student_names == ["Ana Ivanovic", "ben@example.com"]
    assert first.coach_id == 20
    assert first.coach_name == "Coach Carter"
    assert first.revenue == Decimal("30.00")
    assert first.location_name == "Centre Court"


def test_missing_profiles_degrade_to_sentinel():
    sessions = group_into_sessions([_b(1, 99, coach_id=98, cost=None)], {}, {})
    assert sessions[0].student_names == [UNKNOWN]
    assert sessions[0].coach_name == UNKNOWN
    assert sessions[0].location_name == UNKNOWN
    assert sessions[0].revenue == Decimal("0")


def test_garbage_input_never_raises():
    assert group_into_sessions(None) == []
    sessions = group_into_sessions([None, {"id": 1, "user_id": 5, "credit_cost": "abc"}])
    assert len(sessions) == 1
    assert sessions[0].revenue == Decimal("0")


def test_same_result_for_any_input_order():
    bookings = [
        _b(1, 10),
        _b(2, 11, coach_id=20),
        _b(3, 12, coach_id=21),
        _b(4, 10, start=T10, end=T11, cost="20.00"),
    ]
    expected = None
    for order in itertools.permutations(bookings):
        got = [(s.key, sorted(s.student_ids), s.coach_id, s.revenue) for s in group_into_sessions(order, PROFILES)]
        if expected is None:
            expected = got
        assert got == expected
    assert expected[0][2] == 20


def test_duplicate_student_counted_once_but_revenue_summed():
    sessions = group_into_sessions([_b(1, 10), _b(2, 10)])
    assert sessions[0].student_ids == [10]
    assert sessions[0].revenue == Decimal("30.00")


def test_list_sessions_loads_profiles_in_batch(make_user, make_location, make_booking):
    coach = make_user(("COACH",), first_name="Coach", last_name="Carter")
    ana = make_user(first_name="Ana", last_name="Ivanovic")
    ben = make_user()
    loc = make_location("Centre Court")
    make_booking(ana, loc, T9, T10, coach=coach)
    make_booking(ben, loc, T9, T10)
    make_booking(ben, loc, T10, T11)

    sessions, err = list_sessions("2025-06-11", "2025-06-11")
    assert err is None
    assert len(sessions) == 2
    assert sessions[0].student_names == ["Ana Ivanovic", ben.email]
    assert sessions[0].coach_name == "Coach Carter"
    assert sessions[0].location_name == "Centre Court"

    own, _ = list_sessions("2025-06-11", "2025-06-11", coach_id=coach.id)
    assert [s.key for s in own] == [(loc.id, T9, T10)]
    assert own[0].size == 2


def test_list_sessions_rejects_bad_dates(app):
    _, err = list_sessions("2025-06-12", "2025-06-11")
    assert isinstance(err, ValidationError)


def test_assign_coach_updates_whole_session(make_user, make_location, make_booking):
    first_coach = make_user(("COACH",))
    second_coach = make_user(("COACH",))
    students = [make_user() for _ in range(3)]
    loc = make_location()
    for s in students:
        make_booking(s, loc, T9, T10, coach=first_coach)
    other = make_booking(students[0], loc, T10, T11, coach=first_coach)

    updated, err = assign_coach(loc.id, T9, T10, second_coach.id)
    assert err is None
    assert updated == 3
    rows = Booking.query.filter_by(location_id=loc.id, start_time=T9).all()
    assert {b.coach_id for b in rows} == {second_coach.id}
    assert db.session.get(Booking, other.id).coach_id == first_coach.id

    updated, err = assign_coach(loc.id, T9, T10, None)
    assert err is None
    assert {b.coach_id for b in Booking.query.filter_by(start_time=T9).all()} == {None}


def test_assign_coach_requires_a_coach(make_user, make_location, make_booking):
    student = make_user()
    loc = make_location()
    make_booking(student, loc, T9, T10)

    _, err = assign_coach(loc.id, T9, T10, student.id)
    assert isinstance(err, ValidationError)
    _, err = assign_coach(loc.id, T9, T10, 9999)
    assert isinstance(err, NotFoundError)
    _, err = assign_coach(loc.id, T10, T11, None)
    assert isinstance(err, NotFoundError)


def test_session_dict_uses_local_times():
    session = group_into_sessions([_b(1, 10)], PROFILES)[0]
    data = session.to_dict()
    assert data["local_date"] == date(2025, 6, 11).isoformat()
    assert data["local_start"] == "09:00"
    assert data["local_end"] == "10:00"
    assert data["revenue"] == "15.00"
    assert tz.utc_to_local_time(T11) == "11:00"
