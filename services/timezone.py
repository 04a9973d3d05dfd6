"""
Conversions between the academy's civil calendar and stored UTC instants.

Rules:
- Storage: naive datetimes in UTC
- Display, grouping, policy deadlines: the academy zone (ACADEMY_TIMEZONE)
- The host process zone is never consulted
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

import pytz
from flask import current_app, has_app_context

from models.db import utcnow

DEFAULT_TIMEZONE = "Australia/Sydney"

__all__ = [
    "get_timezone",
    "local_date_to_utc_range",
    "local_datetime_to_utc",
    "to_naive_utc",
    "utc_to_local",
    "utc_to_local_date",
    "utc_to_local_time",
    "local_today",
    "add_days",
    "parse_local_date",
    "parse_instant",
    "utcnow",
]


def _zone_name() -> str:
    if has_app_context():
        return current_app.config.get("ACADEMY_TIMEZONE") or DEFAULT_TIMEZONE
    return DEFAULT_TIMEZONE


def get_timezone(tz_name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(tz_name or _zone_name())


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return pytz.utc.localize(instant)
    return instant.astimezone(pytz.utc)


def _to_naive_utc(aware: datetime) -> datetime:
    return aware.astimezone(timezone.utc).replace(tzinfo=None)


def to_naive_utc(instant: datetime) -> datetime:
    """Naive values are taken to be UTC already; aware ones are converted."""
    if instant.tzinfo is None:
        return instant
    return _to_naive_utc(instant)


def _localize(tz, naive: datetime, strict: bool) -> datetime:
    try:
        return tz.localize(naive, is_dst=None)
    except pytz.exceptions.AmbiguousTimeError:
        # Fall back: the wall time happens twice, take the first occurrence
        return tz.localize(naive, is_dst=True)
    except pytz.exceptions.NonExistentTimeError:
        if strict:
            raise ValueError(
                f"{naive.strftime('%Y-%m-%d %H:%M')} does not exist in {tz.zone} "
                "(daylight saving gap)"
            )
        return tz.normalize(tz.localize(naive, is_dst=False))


def local_date_to_utc_range(local_date: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """
    UTC instants of the first and last microsecond of ``local_date`` in the
    academy zone. On a daylight saving day the span is 23 or 25 hours.
    """
    tz = get_timezone(tz_name)
    start = _localize(tz, datetime.combine(local_date, time.min), strict=False)
    end = _localize(tz, datetime.combine(local_date, time.max), strict=False)
    return _to_naive_utc(start), _to_naive_utc(end)


def local_datetime_to_utc(local_date: date, hour: int, minute: int = 0, tz_name: Optional[str] = None) -> datetime:
    """
    Raises:
        ValueError: the wall time falls in a spring-forward gap
    """
    tz = get_timezone(tz_name)
    naive = datetime.combine(local_date, time(hour, minute))
    return _to_naive_utc(_localize(tz, naive, strict=True))


def utc_to_local(instant: datetime, tz_name: Optional[str] = None) -> datetime:
    return _as_utc(instant).astimezone(get_timezone(tz_name))


def utc_to_local_date(instant: datetime, tz_name: Optional[str] = None) -> date:
    return utc_to_local(instant, tz_name).date()


def utc_to_local_time(instant: datetime, tz_name: Optional[str] = None) -> str:
    return utc_to_local(instant, tz_name).strftime("%H:%M")


def local_today(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    return utc_to_local_date(now or utcnow(), tz_name)


def add_days(local_date: date, days: int) -> date:
    return local_date + timedelta(days=days)


def parse_local_date(value) -> date:
    """Accepts a date or a YYYY-MM-DD string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


def parse_instant(value) -> datetime:
    """
    ISO-8601 datetime. A value without an offset is taken as UTC, the
    storage convention; use ``local_datetime_to_utc`` for wall times.
    """
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)
