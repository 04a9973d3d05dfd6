from datetime import date, timedelta
from typing import Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.availability import Availability
from models.location import Location
from services import timezone as tz
from services.errors import BookingError, DependencyError, NotFoundError, ValidationError
from services.slot_planner import OpenSlot, time_to_minutes
from utils.audit import log_event

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def open_slots_query(range_start, range_end, location_id=None, service_name=None, include_full=False):
    """
    The single definition of an "open" slot: not full, at a live location,
    starting inside [range_start, range_end] (UTC). ``include_full`` drops
    the "not full" part.
    """
    q = (
        Availability.query
        .join(Location, Availability.location_id == Location.id)
        .filter(
            Location.is_deleted.is_(False),
            Availability.start_time >= range_start,
            Availability.start_time <= range_end,
        )
    )
    if not include_full:
        q = q.filter(Availability.is_booked.is_(False))
    if location_id:
        q = q.filter(Availability.location_id == location_id)
    if service_name:
        q = q.filter(Availability.service_name == service_name)
    return q


def list_open_slots(local_date: date, location_id=None, service_name=None, include_full=False) -> List[OpenSlot]:
    start, end = tz.local_date_to_utc_range(local_date)
    rows = (
        open_slots_query(start, end, location_id, service_name, include_full)
        .order_by(Availability.start_time.asc(), Availability.location_id.asc())
        .all()
    )
    return [
        OpenSlot(
            location_id=row.location_id,
            time24=tz.utc_to_local_time(row.start_time),
            availability_id=row.id,
            start_time=row.start_time,
            end_time=row.end_time,
            service_name=row.service_name,
        )
        for row in rows
    ]


def create_location(name: str, address: Optional[str] = None, academy_id=None, actor_id=None):
    name = (name or "").strip()
    if not name:
        return None, ValidationError("Location name required")

    location = Location(name=name, address=(address or "").strip() or None, academy_id=academy_id)
    db.session.add(location)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        return None, DependencyError("Could not save location", {"reason": str(exc)})

    log_event("LOCATION_CREATE", user_id=actor_id, entity="location", entity_id=location.id)
    return location, None


def _parse_weekdays(days: Iterable) -> set:
    out = set()
    for day in days or []:
        if isinstance(day, int) and 0 <= day <= 6:
            out.add(day)
        elif isinstance(day, str) and day.strip().lower() in WEEKDAYS:
            out.add(WEEKDAYS.index(day.strip().lower()))
        else:
            raise ValidationError(f"Unknown day of week: {day!r}")
    if not out:
        raise ValidationError("Select at least one day of the week")
    return out


def _parse_window(start_str: str, end_str: str, slot_minutes: int):
    try:
        start_min = time_to_minutes(start_str)
        end_min = time_to_minutes(end_str)
    except (AttributeError, ValueError):
        raise ValidationError("Daily window must use HH:MM times")
    if start_min % slot_minutes or end_min % slot_minutes:
        raise ValidationError(f"Daily window must align to {slot_minutes}-minute increments")
    if end_min <= start_min or end_min > 24 * 60:
        raise ValidationError("Daily window end must be after its start")
    return start_min, end_min


def bulk_create_availability(
    location_ids,
    start_date,
    end_date,
    days_of_week,
    window_start: str,
    window_end: str,
    service_name: Optional[str] = None,
    max_capacity=None,
    actor_id=None,
):
    """
    One row per slot increment per selected weekday per location, between
    two academy-local dates inclusive. Rows that already exist are skipped.
    Returns ({"created": n, "skipped": m}, error).
    """
    slot_minutes = current_app.config.get("SLOT_MINUTES", 30)
    try:
        if not location_ids:
            raise ValidationError("Select at least one location")
        try:
            first_day = tz.parse_local_date(start_date)
            last_day = tz.parse_local_date(end_date)
        except (TypeError, ValueError):
            raise ValidationError("Dates must use YYYY-MM-DD")
        if last_day < first_day:
            raise ValidationError("end_date must not be before start_date")

        weekdays = _parse_weekdays(days_of_week)
        start_min, end_min = _parse_window(window_start, window_end, slot_minutes)

        capacity = max_capacity if max_capacity is not None else current_app.config.get("DEFAULT_MAX_CAPACITY", 10)
        try:
            capacity = int(capacity)
        except (TypeError, ValueError):
            raise ValidationError("max_capacity must be an integer")
        if capacity < 1:
            raise ValidationError("max_capacity must be at least 1")

        try:
            ids = {int(i) for i in location_ids}
        except (TypeError, ValueError):
            raise ValidationError("location_ids must be integers")
        locations = Location.query.filter(Location.id.in_(ids), Location.is_deleted.is_(False)).all()
        missing = ids - {loc.id for loc in locations}
        if missing:
            raise NotFoundError("Location not found", {"location_ids": sorted(missing)})

        range_start, _ = tz.local_date_to_utc_range(first_day)
        _, range_end = tz.local_date_to_utc_range(last_day)
        existing = {
            (row.location_id, row.start_time)
            for row in Availability.query.filter(
                Availability.location_id.in_(ids),
                Availability.start_time >= range_start,
                Availability.start_time <= range_end,
            ).all()
        }

        created = skipped = 0
        day = first_day
        while day <= last_day:
            if day.weekday() in weekdays:
                for minute in range(start_min, end_min, slot_minutes):
                    try:
                        slot_start = tz.local_datetime_to_utc(day, minute // 60, minute % 60)
                    except ValueError:
                        # wall time skipped by daylight saving
                        skipped += len(locations)
                        continue
                    slot_end = slot_start + timedelta(minutes=slot_minutes)
                    for location in locations:
                        if (location.id, slot_start) in existing:
                            skipped += 1
                            continue
                        db.session.add(Availability(
                            location_id=location.id,
                            start_time=slot_start,
                            end_time=slot_end,
                            service_name=service_name or None,
                            max_capacity=capacity,
                            is_booked=False,
                        ))
                        created += 1
            day = tz.add_days(day, 1)

        if created == 0 and skipped == 0:
            raise ValidationError("No availability slots match the date range and days selected")

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError("Some slots were created concurrently; retry the request")
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not save availability", {"reason": str(exc)})
    except BookingError as err:
        return None, err

    log_event(
        "AVAILABILITY_BULK_CREATE",
        user_id=actor_id,
        entity="location",
        entity_id=",".join(str(i) for i in sorted(ids)),
        metadata={"created": created, "skipped": skipped, "from": str(first_day), "to": str(last_day)},
    )
    return {"created": created, "skipped": skipped}, None
