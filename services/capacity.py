"""
Capacity gate: the only code path that inserts or deletes bookings.

A session is every booking sharing (location, start, end). A session's range
has to be covered exactly by contiguous availability rows of its location,
and the smallest ``max_capacity`` among those rows is the session's
capacity. Creation locks the covered rows (``SELECT ... FOR UPDATE``,
ordered by id) before counting, so two requests for the same slot run one
after the other; the unique (location, start, end, user) constraint stops
a student from taking two seats.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.availability import Availability
from models.booking import Booking
from models.location import Location
from models.user import User
from services import pricing
from services import timezone as tz
from services.errors import (
    BookingError,
    CapacityExceededError,
    DependencyError,
    NotFoundError,
    ValidationError,
)
from utils.audit import log_event

SEAT_CONSTRAINT = "uq_booking_session_user"


def _lock_rows(location_id: int, start: datetime, end: datetime):
    """
    Row locks on every availability row inside the range, ordered by id.
    SQLite has no row locks, so there a no-op UPDATE takes the database
    write lock before anything is counted.
    """
    in_range = (
        Availability.location_id == location_id,
        Availability.start_time >= start,
        Availability.end_time <= end,
    )
    if db.session.get_bind().dialect.name == "sqlite":
        db.session.execute(
            update(Availability)
            .where(*in_range)
            .values(is_booked=Availability.is_booked)
            .execution_options(synchronize_session=False)
        )
        return Availability.query.filter(*in_range).order_by(Availability.id.asc()).all()
    return Availability.query.filter(*in_range).order_by(Availability.id.asc()).with_for_update().all()


def _covered_rows(location_id: int, start: datetime, end: datetime, lock: bool = False):
    if lock:
        rows = _lock_rows(location_id, start, end)
    else:
        rows = (
            Availability.query
            .filter(
                Availability.location_id == location_id,
                Availability.start_time >= start,
                Availability.end_time <= end,
            )
            .all()
        )
    rows = sorted(rows, key=lambda r: r.start_time)

    if not rows or rows[0].start_time != start or rows[-1].end_time != end:
        return None
    for prev, nxt in zip(rows, rows[1:]):
        if prev.end_time != nxt.start_time:
            return None
    return rows


def _session_count(location_id: int, start: datetime, end: datetime) -> int:
    return (
        db.session.query(func.count(Booking.id))
        .filter(
            Booking.location_id == location_id,
            Booking.start_time == start,
            Booking.end_time == end,
        )
        .scalar()
    ) or 0


def refresh_booked_flags(rows) -> None:
    """
    Sets ``is_booked`` on each row: true iff some session covering the row
    has at least the row's ``max_capacity`` bookings. Does not commit.
    """
    if not rows:
        return
    location_id = rows[0].location_id
    lo = min(r.start_time for r in rows)
    hi = max(r.end_time for r in rows)
    db.session.flush()
    sessions = (
        db.session.query(Booking.start_time, Booking.end_time, func.count(Booking.id))
        .filter(
            Booking.location_id == location_id,
            Booking.start_time < hi,
            Booking.end_time > lo,
        )
        .group_by(Booking.start_time, Booking.end_time)
        .all()
    )
    for row in rows:
        row.is_booked = any(
            s_start <= row.start_time and s_end >= row.end_time and count >= row.max_capacity
            for s_start, s_end, count in sessions
        )


def _is_duplicate_seat(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint, SQLite lists its columns
    text = str(exc.orig)
    return SEAT_CONSTRAINT in text or ("UNIQUE" in text and "bookings.user_id" in text)


def _check_advance(start: datetime, now: datetime) -> None:
    if start <= now:
        raise ValidationError("Cannot book a session that has already started")
    days = current_app.config.get("BOOKING_MIN_ADVANCE_DAYS", 7)
    if days and start < now + timedelta(days=days):
        raise ValidationError(
            f"Bookings must be at least {days} days in advance",
            {"min_advance_days": days},
        )


def create_booking(
    location_id,
    start,
    end,
    user_id,
    coach_id=None,
    service_name=None,
    credit_cost=None,
    enforce_advance=True,
    actor_id=None,
    now=None,
):
    """
    Books one seat in the session (location_id, start, end) for user_id.
    ``start`` and ``end`` are naive UTC. Returns (booking, error).
    """
    try:
        if not location_id or not user_id:
            raise ValidationError("location_id and user_id are required")
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise ValidationError("start and end must be datetimes")
        start, end = tz.to_naive_utc(start), tz.to_naive_utc(end)
        if end <= start:
            raise ValidationError("end must be after start")
        if enforce_advance:
            _check_advance(start, now or tz.utcnow())

        cost = pricing.service_price(service_name) if credit_cost is None else pricing.parse_cost(credit_cost)

        location = db.session.get(Location, location_id)
        if location is None or location.is_deleted:
            raise NotFoundError("Location not found", {"location_id": location_id})
        if db.session.get(User, user_id) is None:
            raise NotFoundError("Student not found", {"user_id": user_id})

        try:
            rows = _covered_rows(location.id, start, end, lock=True)
            if rows is None:
                raise NotFoundError(
                    "No availability covers the requested time",
                    {"location_id": location.id, "start": start.isoformat(), "end": end.isoformat()},
                )

            capacity = min(r.max_capacity for r in rows)
            occupancy = _session_count(location.id, start, end)
            if occupancy >= capacity:
                raise CapacityExceededError(
                    "This session is full",
                    {"location_id": location.id, "occupancy": occupancy, "max_capacity": capacity},
                )

            if coach_id is None:
                # new seats join the coach the session already has
                existing = (
                    Booking.query
                    .filter_by(location_id=location.id, start_time=start, end_time=end)
                    .filter(Booking.coach_id.isnot(None))
                    .order_by(Booking.id.asc())
                    .first()
                )
                coach_id = existing.coach_id if existing else None

            booking = Booking(
                location_id=location.id,
                user_id=user_id,
                coach_id=coach_id,
                start_time=start,
                end_time=end,
                service_name=service_name or rows[0].service_name,
                credit_cost=cost,
                academy_id=location.academy_id,
            )
            db.session.add(booking)
            refresh_booked_flags(rows)
            db.session.commit()
        except BookingError:
            db.session.rollback()
            raise
        except IntegrityError as exc:
            db.session.rollback()
            if _is_duplicate_seat(exc):
                raise ValidationError("You already have a seat in this session", {"location_id": location.id})
            raise DependencyError("Could not save booking", {"reason": str(exc.orig)})
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not save booking", {"reason": str(exc)})
    except BookingError as err:
        return None, err

    log_event(
        "BOOKING_CREATE",
        user_id=actor_id or user_id,
        entity="booking",
        entity_id=booking.id,
        metadata={"location_id": booking.location_id, "start": booking.start_time, "user_id": user_id},
    )
    return booking, None


def release_booking(booking_id):
    """
    Deletes one booking and recomputes the flags of the rows its session
    covers. Returns (booking_snapshot, error); the snapshot is a dict since
    the row is gone.
    """
    try:
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})

        snapshot = {
            "id": booking.id,
            "location_id": booking.location_id,
            "user_id": booking.user_id,
            "coach_id": booking.coach_id,
            "start_time": booking.start_time,
            "end_time": booking.end_time,
            "service_name": booking.service_name,
            "credit_cost": Decimal(booking.credit_cost or 0),
            "academy_id": booking.academy_id,
        }
        try:
            rows = _lock_rows(booking.location_id, booking.start_time, booking.end_time)
            db.session.delete(booking)
            refresh_booked_flags(rows)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not remove booking", {"reason": str(exc), "booking_id": booking_id})
    except BookingError as err:
        return None, err

    return snapshot, None


def session_occupancy(location_id, start, end):
    """(occupancy, capacity) for a session; capacity is None when the range is not covered."""
    rows = _covered_rows(location_id, start, end)
    capacity = min(r.max_capacity for r in rows) if rows else None
    return _session_count(location_id, start, end), capacity
