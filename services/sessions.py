"""
Groups bookings into sessions: every booking sharing (location, start, end).

Named policies:
- first coach wins: a session's coach is the coach_id of its earliest
  booking (by id) that has one
- last write wins: ``assign_coach`` overwrites coach_id on every booking of
  the session in one UPDATE
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import Booking
from models.location import Location
from models.user import User
from services import timezone as tz
from services.errors import BookingError, DependencyError, NotFoundError, ValidationError
from services.identity import COACH
from utils.audit import log_event

UNKNOWN = "Unknown"


@dataclass
class Session:
    location_id: int
    start_time: datetime
    end_time: datetime
    location_name: str = UNKNOWN
    service_name: Optional[str] = None
    booking_ids: List[int] = field(default_factory=list)
    student_ids: List[int] = field(default_factory=list)
    student_names: List[str] = field(default_factory=list)
    coach_id: Optional[int] = None
    coach_name: Optional[str] = None
    revenue: Decimal = Decimal("0.00")

    @property
    def key(self) -> Tuple[int, datetime, datetime]:
        return (self.location_id, self.start_time, self.end_time)

    @property
    def size(self) -> int:
        return len(self.student_ids)

    def to_dict(self) -> dict:
        return {
            "location_id": self.location_id,
            "location_name": self.location_name,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "local_date": tz.utc_to_local_date(self.start_time).isoformat() if self.start_time else None,
            "local_start": tz.utc_to_local_time(self.start_time) if self.start_time else None,
            "local_end": tz.utc_to_local_time(self.end_time) if self.end_time else None,
            "service_name": self.service_name,
            "booking_ids": list(self.booking_ids),
            "students": [
                {"id": uid, "name": name} for uid, name in zip(self.student_ids, self.student_names)
            ],
            "coach": {"id": self.coach_id, "name": self.coach_name} if self.coach_id else None,
            "revenue": str(self.revenue),
        }


def display_name(profile) -> str:
    """first + last name, else e-mail, else "Unknown"."""
    if profile is None:
        return UNKNOWN
    if isinstance(profile, dict):
        first, last, email = profile.get("first_name"), profile.get("last_name"), profile.get("email")
    else:
        first = getattr(profile, "first_name", None)
        last = getattr(profile, "last_name", None)
        email = getattr(profile, "email", None)
    name = " ".join(p.strip() for p in (first, last) if p and p.strip())
    return name or (email or "").strip() or UNKNOWN


def _money(value) -> Decimal:
    try:
        amount = Decimal(str(value)) if value is not None else Decimal("0")
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return amount if amount.is_finite() else Decimal("0")


def _attr(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _sort_key(session: Session):
    return (
        session.start_time is None,
        session.start_time or datetime.min,
        session.location_id if session.location_id is not None else -1,
        session.end_time or datetime.min,
    )


def group_into_sessions(bookings: Iterable, profiles: Optional[Dict[int, object]] = None, locations: Optional[Dict[int, object]] = None) -> List[Session]:
    """
    Bookings (models or dicts) -> sessions sorted by start, then location.
    ``profiles`` maps user id to a User (or dict); ``locations`` maps
    location id to a Location (or name). Never raises on missing data.
    """
    profiles = profiles or {}
    locations = locations or {}
    grouped: Dict[Tuple, Session] = {}

    # walk in booking id order so the result does not depend on input order
    ordered = sorted(
        (b for b in bookings or () if b is not None),
        key=lambda b: (_attr(b, "id") is None, _attr(b, "id") or 0),
    )
    for booking in ordered:
        key = (_attr(booking, "location_id"), _attr(booking, "start_time"), _attr(booking, "end_time"))
        session = grouped.get(key)
        if session is None:
            location = locations.get(key[0])
            if isinstance(location, str):
                location_name = location
            else:
                location_name = _attr(location, "name") if location is not None else None
            session = Session(
                location_id=key[0],
                start_time=key[1],
                end_time=key[2],
                location_name=location_name or UNKNOWN,
                service_name=_attr(booking, "service_name"),
            )
            grouped[key] = session

        booking_id = _attr(booking, "id")
        if booking_id is not None:
            session.booking_ids.append(booking_id)

        user_id = _attr(booking, "user_id")
        if user_id is not None and user_id not in session.student_ids:
            session.student_ids.append(user_id)
            session.student_names.append(display_name(profiles.get(user_id)))

        coach_id = _attr(booking, "coach_id")
        if session.coach_id is None and coach_id is not None:
            session.coach_id = coach_id
            session.coach_name = display_name(profiles.get(coach_id))

        session.revenue += _money(_attr(booking, "credit_cost"))

    return sorted(grouped.values(), key=_sort_key)


def load_profiles(user_ids) -> Dict[int, User]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    return {u.id: u for u in User.query.filter(User.id.in_(ids)).all()}


def list_sessions(start_date=None, end_date=None, location_id=None, coach_id=None, student_id=None):
    """
    Sessions whose start falls between two academy-local dates (inclusive).
    A student filter keeps only that student's own bookings. Returns
    (sessions, error).
    """
    try:
        try:
            first = tz.parse_local_date(start_date) if start_date else tz.local_today()
            last = tz.parse_local_date(end_date) if end_date else tz.add_days(first, 30)
        except (TypeError, ValueError):
            raise ValidationError("Dates must use YYYY-MM-DD")
        if last < first:
            raise ValidationError("end must not be before start")

        range_start, _ = tz.local_date_to_utc_range(first)
        _, range_end = tz.local_date_to_utc_range(last)

        try:
            q = Booking.query.filter(Booking.start_time >= range_start, Booking.start_time <= range_end)
            if location_id:
                q = q.filter(Booking.location_id == location_id)
            if student_id:
                q = q.filter(Booking.user_id == student_id)
            if coach_id:
                # a coach sees whole sessions, so filter on the session keys they hold
                keys = (
                    db.session.query(Booking.location_id, Booking.start_time, Booking.end_time)
                    .filter(Booking.coach_id == coach_id, Booking.start_time >= range_start, Booking.start_time <= range_end)
                    .distinct()
                    .all()
                )
                if not keys:
                    return [], None
                q = q.filter(Booking.location_id.in_({k[0] for k in keys}))
                wanted = set(keys)
            else:
                wanted = None

            bookings = q.order_by(Booking.id.asc()).all()
            if wanted is not None:
                bookings = [b for b in bookings if b.session_key in wanted]

            user_ids = {b.user_id for b in bookings} | {b.coach_id for b in bookings}
            profiles = load_profiles(user_ids)
            location_ids = {b.location_id for b in bookings}
            locations = (
                {loc.id: loc for loc in Location.query.filter(Location.id.in_(location_ids)).all()}
                if location_ids else {}
            )
        except SQLAlchemyError as exc:
            raise DependencyError("Could not load sessions", {"reason": str(exc)})
    except BookingError as err:
        return None, err

    return group_into_sessions(bookings, profiles, locations), None


def assign_coach(location_id, start, end, coach_id, actor_id=None):
    """
    Sets coach_id on every booking of a session (None unassigns). Returns
    (updated_count, error).
    """
    try:
        if not location_id or start is None or end is None:
            raise ValidationError("location_id, start and end are required")
        start, end = tz.to_naive_utc(start), tz.to_naive_utc(end)

        if coach_id is not None:
            coach = db.session.get(User, coach_id)
            if coach is None:
                raise NotFoundError("Coach not found", {"coach_id": coach_id})
            if COACH not in coach.role_names:
                raise ValidationError("User is not a coach", {"coach_id": coach_id})

        try:
            updated = (
                Booking.query
                .filter_by(location_id=location_id, start_time=start, end_time=end)
                .update({Booking.coach_id: coach_id}, synchronize_session=False)
            )
            if not updated:
                db.session.rollback()
                raise NotFoundError("No bookings in this session", {"location_id": location_id})
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise DependencyError("Could not assign coach", {"reason": str(exc)})
    except BookingError as err:
        return None, err

    log_event(
        "SESSION_COACH_ASSIGN",
        user_id=actor_id,
        entity="session",
        entity_id=f"{location_id}:{start.isoformat()}:{end.isoformat()}",
        metadata={"coach_id": coach_id, "bookings": updated},
    )
    return updated, None
