"""
Server side of the slot picker: toggling slots for one local date, and
turning a finished selection into bookings.
"""

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from services import capacity, pricing
from services import timezone as tz
from services.availability import list_open_slots
from services.errors import (
    BookingError,
    DependencyError,
    IncompleteMinimumBlock,
    NotAuthorizedError,
    PartialSuccess,
    ValidationError,
)
from services.identity import Actor
from services.slot_planner import Selection, SlotSelectionPlanner


def _planner(local_date, location_id=None, service_name=None, include_full=False) -> SlotSelectionPlanner:
    try:
        slots = list_open_slots(local_date, location_id, service_name, include_full)
    except SQLAlchemyError as exc:
        raise DependencyError("Could not load availability", {"reason": str(exc)})
    return SlotSelectionPlanner(
        slots,
        min_slots=pricing.required_slots(service_name),
        slot_minutes=current_app.config.get("SLOT_MINUTES", 30),
    )


def _parse_date(value):
    try:
        return tz.parse_local_date(value)
    except (TypeError, ValueError):
        raise ValidationError("date must use YYYY-MM-DD")


def plan_selection(selection, location_id, time24, local_date, location_filter=None, service_name=None):
    """
    Toggles one slot. ``selection`` is the serialised form
    ``{location_id: ["HH:MM", ...]}``. Returns ({"selection", "summary"},
    error); on IncompleteMinimumBlock the unchanged selection still comes
    back in the result.
    """
    try:
        current = Selection.from_dict(selection)
        if not location_id or not time24:
            raise ValidationError("location_id and time are required")
        try:
            location_id = int(location_id)
        except (TypeError, ValueError):
            raise ValidationError("location_id must be an integer")
        if location_filter:
            try:
                location_filter = int(location_filter)
            except (TypeError, ValueError):
                raise ValidationError("location_filter must be an integer")
            if location_filter != location_id:
                raise ValidationError("Slot is outside the selected location", {"location_id": location_id})
        planner = _planner(_parse_date(local_date), location_filter, service_name)
        try:
            updated, err = planner.toggle_slot(current, location_id, time24)
        except (AttributeError, ValueError):
            raise ValidationError("time must use HH:MM")
    except BookingError as err:
        return None, err

    payload = {"selection": updated.to_dict(), "summary": planner.summarize(updated)}
    if err is not None:
        return payload, err
    return payload, None


def book_selection(actor: Actor, selection, local_date, service_name=None):
    """
    One booking per location in a valid selection. Each booking commits on
    its own; a mix of successes and failures is a PartialSuccess.
    Returns ({"bookings": [...], "failed": [...]}, error).
    """
    try:
        if not actor.is_student:
            raise NotAuthorizedError("Only students can book sessions")
        current = Selection.from_dict(selection)
        day = _parse_date(local_date)
        # full slots stay in the planner so the capacity gate reports them
        planner = _planner(day, None, service_name, include_full=True)
        if not planner.is_valid(current):
            raise IncompleteMinimumBlock(
                f"Select at least {planner.min_slots * planner.slot_minutes} consecutive minutes",
                {"min_slots": planner.min_slots},
            )
        ranges = planner.to_booking_ranges(current, day)
    except BookingError as err:
        return None, err

    booked, failed, first_error = [], [], None
    for location_id, start, end in ranges:
        booking, err = capacity.create_booking(
            location_id,
            start,
            end,
            actor.user_id,
            service_name=service_name,
            actor_id=actor.user_id,
        )
        if err:
            first_error = first_error or err
            failed.append({"location_id": location_id, "code": err.code, "error": err.message})
            continue
        booked.append(booking)

    result = {"bookings": booked, "failed": failed}
    if not failed:
        return result, None
    if not booked:
        return None, first_error
    return result, PartialSuccess(f"{len(booked)} booked, {len(failed)} failed", {"failed": failed})
