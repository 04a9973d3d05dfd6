from datetime import date, datetime

import pytest

from services.errors import IncompleteMinimumBlock, ValidationError
from services.slot_planner import OpenSlot, Selection, SlotSelectionPlanner

L1, L2 = 1, 2


def _planner(times_by_location, min_slots=2):
    slots = [OpenSlot(location_id=loc, time24=t) for loc, times in times_by_location.items() for t in times]
    return SlotSelectionPlanner(slots, min_slots=min_slots)


@pytest.fixture
def planner():
    return _planner({
        L1: ["09:00", "09:30", "10:00", "10:30", "11:00", "14:00", "14:30", "16:00"],
        L2: ["09:00", "09:30"],
    })


def test_first_pick_adds_following_slot(planner):
    sel, err = planner.toggle_slot(Selection(), L1, "09:00")
    assert err is None
    assert sel.slots_for(L1) == ("09:00", "09:30")
    assert planner.is_valid(sel)


def test_first_pick_without_following_slot_is_rejected(planner):
    start = Selection()
    sel, err = planner.toggle_slot(start, L1, "16:00")
    assert isinstance(err, IncompleteMinimumBlock)
    assert sel is start
    assert sel.slots_for(L1) == ()


def test_pick_of_closed_slot_is_rejected(planner):
    sel, err = planner.toggle_slot(Selection(), L1, "12:00")
    assert isinstance(err, ValidationError)
    assert sel.total_slots == 0


def test_select_then_deselect_second_slot_clears_location(planner):
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    summary = planner.summarize(sel)
    assert summary["ranges"]["1"]["start"] == "09:00"
    assert summary["ranges"]["1"]["end"] == "10:00"
    assert summary["total_minutes"] == 60
    assert summary["is_valid"] is True

    sel, err = planner.toggle_slot(sel, L1, "09:30")
    assert err is None
    assert sel.slots_for(L1) == ()
    assert not planner.is_valid(sel)


def test_extension_by_one_slot(planner):
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    sel, err = planner.toggle_slot(sel, L1, "10:00")
    assert err is None
    assert sel.slots_for(L1) == ("09:00", "09:30", "10:00")
    assert planner.summarize(sel)["ranges"]["1"]["end"] == "10:30"


def test_non_contiguous_pick_starts_fresh_block(planner):
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    sel, err = planner.toggle_slot(sel, L1, "14:00")
    assert err is None
    assert sel.slots_for(L1) == ("14:00", "14:30")


def test_failed_non_contiguous_pick_keeps_existing_block(planner):
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    after, err = planner.toggle_slot(sel, L1, "16:00")
    assert isinstance(err, IncompleteMinimumBlock)
    assert after.slots_for(L1) == ("09:00", "09:30")


def test_locations_are_independent(planner):
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    sel, _ = planner.toggle_slot(sel, L2, "09:00")
    assert sel.slots_for(L1) == ("09:00", "09:30")
    assert sel.slots_for(L2) == ("09:00", "09:30")
    assert planner.summarize(sel)["total_minutes"] == 120

    sel, _ = planner.toggle_slot(sel, L2, "09:00")
    assert sel.slots_for(L2) == ()
    assert sel.slots_for(L1) == ("09:00", "09:30")


def test_interior_deselect_keeps_earlier_run(planner):
    sel = Selection({L1: ("09:00", "09:30", "10:00", "10:30", "11:00")})
    sel, _ = planner.toggle_slot(sel, L1, "10:00")
    assert sel.slots_for(L1) == ("09:00", "09:30")


def test_interior_deselect_falls_back_to_later_run(planner):
    sel = Selection({L1: ("09:00", "09:30", "10:00", "10:30")})
    sel, _ = planner.toggle_slot(sel, L1, "09:30")
    assert sel.slots_for(L1) == ("10:00", "10:30")


def test_removing_last_slot_of_long_run_keeps_rest(planner):
    sel = Selection({L1: ("09:00", "09:30", "10:00")})
    sel, _ = planner.toggle_slot(sel, L1, "10:00")
    assert sel.slots_for(L1) == ("09:00", "09:30")


def test_service_block_length_is_respected():
    planner = _planner({L1: ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]}, min_slots=6)
    sel, err = planner.toggle_slot(Selection(), L1, "09:00")
    assert err is None
    assert len(sel.slots_for(L1)) == 6

    sel, err = planner.toggle_slot(Selection(), L1, "09:30")
    assert isinstance(err, IncompleteMinimumBlock)


def test_selection_serialisation():
    sel = Selection.from_dict({"3": ["9:30", "09:00"]})
    assert sel.slots_for(3) == ("09:00", "09:30")
    assert sel.to_dict() == {"3": ["09:00", "09:30"]}
    with pytest.raises(ValidationError):
        Selection.from_dict({"x": ["09:00"]})
    with pytest.raises(ValidationError):
        Selection.from_dict(["09:00"])


def test_to_booking_ranges_uses_stored_instants():
    slots = [
        OpenSlot(L1, "09:00", 10, datetime(2025, 6, 10, 23, 0), datetime(2025, 6, 10, 23, 30)),
        OpenSlot(L1, "09:30", 11, datetime(2025, 6, 10, 23, 30), datetime(2025, 6, 11, 0, 0)),
    ]
    planner = SlotSelectionPlanner(slots)
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    assert planner.to_booking_ranges(sel) == [(L1, datetime(2025, 6, 10, 23, 0), datetime(2025, 6, 11, 0, 0))]


def test_to_booking_ranges_converts_wall_times():
    planner = _planner({L1: ["09:00", "09:30"]})
    sel, _ = planner.toggle_slot(Selection(), L1, "09:00")
    assert planner.to_booking_ranges(sel, date(2025, 6, 11)) == [
        (L1, datetime(2025, 6, 10, 23, 0), datetime(2025, 6, 11, 0, 0)),
    ]
