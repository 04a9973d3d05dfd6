from datetime import date, datetime

from models.availability import Availability
from services.availability import bulk_create_availability, create_location, list_open_slots
from services.errors import NotFoundError, ValidationError


def test_create_location(app):
    location, err = create_location("  Centre Court ", " 1 Court Rd ")
    assert err is None
    assert location.name == "Centre Court"
    assert location.address == "1 Court Rd"

    _, err = create_location("   ")
    assert isinstance(err, ValidationError)


def test_bulk_create_on_selected_weekdays(make_location):
    a, b = make_location("North"), make_location("South")
    result, err = bulk_create_availability(
        [a.id, b.id], "2025-06-09", "2025-06-15", ["Monday", "wednesday"], "09:00", "11:00",
        service_name="Stroke Clinic", max_capacity=6,
    )
    assert err is None
    assert result == {"created": 16, "skipped": 0}

    rows = Availability.query.filter_by(location_id=a.id).order_by(Availability.start_time).all()
    assert rows[0].start_time == datetime(2025, 6, 8, 23, 0)
    assert rows[0].end_time == datetime(2025, 6, 8, 23, 30)
    assert rows[-1].end_time == datetime(2025, 6, 11, 1, 0)
    assert {r.max_capacity for r in rows} == {6}
    assert {r.service_name for r in rows} == {"Stroke Clinic"}

    again, err = bulk_create_availability([a.id, b.id], "2025-06-09", "2025-06-15", [0, 2], "09:00", "11:00")
    assert err is None
    assert again == {"created": 0, "skipped": 16}
    assert Availability.query.count() == 16


def test_bulk_create_uses_default_capacity(app, make_location):
    loc = make_location()
    bulk_create_availability([loc.id], "2025-06-09", "2025-06-09", ["monday"], "09:00", "09:30")
    assert Availability.query.one().max_capacity == app.config["DEFAULT_MAX_CAPACITY"]


def test_bulk_create_skips_daylight_saving_gap(make_location):
    loc = make_location()
    result, err = bulk_create_availability([loc.id], "2025-10-05", "2025-10-05", ["sunday"], "01:00", "04:00")
    assert err is None
    assert result == {"created": 4, "skipped": 2}

    rows = Availability.query.order_by(Availability.start_time).all()
    # 01:30 AEST runs straight into 03:00 AEDT
    assert rows[1].end_time == rows[2].start_time == datetime(2025, 10, 4, 16, 0)


def test_bulk_create_validation(make_location):
    loc = make_location()
    cases = [
        ([], "2025-06-09", "2025-06-15", ["monday"], "09:00", "11:00", {}),
        ([loc.id], "2025-06-15", "2025-06-09", ["monday"], "09:00", "11:00", {}),
        ([loc.id], "09/06/2025", "2025-06-15", ["monday"], "09:00", "11:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", ["funday"], "09:00", "11:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", [], "09:00", "11:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", ["monday"], "09:15", "11:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", ["monday"], "11:00", "09:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", ["monday"], "nine", "11:00", {}),
        ([loc.id], "2025-06-09", "2025-06-15", ["monday"], "09:00", "11:00", {"max_capacity": 0}),
        (["x"], "2025-06-09", "2025-06-15", ["monday"], "09:00", "11:00", {}),
        ([loc.id], "2025-06-10", "2025-06-10", ["monday"], "09:00", "11:00", {}),
    ]
    for ids, start, end, days, frm, to, extra in cases:
        result, err = bulk_create_availability(ids, start, end, days, frm, to, **extra)
        assert result is None
        assert isinstance(err, ValidationError), (ids, start, end, days, frm, to, extra)
    assert Availability.query.count() == 0


def test_bulk_create_unknown_location(make_location):
    loc = make_location()
    _, err = bulk_create_availability([loc.id, 999], "2025-06-09", "2025-06-09", ["monday"], "09:00", "10:00")
    assert isinstance(err, NotFoundError)
    assert err.details == {"location_ids": [999]}


def test_list_open_slots_by_local_date(make_location, make_slots):
    loc = make_location()
    rows = make_slots(loc, date(2025, 6, 11), "09:00", "10:30")
    rows[1].is_booked = True

    slots = list_open_slots(date(2025, 6, 11))
    assert [s.time24 for s in slots] == ["09:00", "10:00"]
    assert [s.time24 for s in list_open_slots(date(2025, 6, 11), include_full=True)] == ["09:00", "09:30", "10:00"]
    assert list_open_slots(date(2025, 6, 12)) == []
    assert list_open_slots(date(2025, 6, 11), location_id=loc.id + 1) == []
