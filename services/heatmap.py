from datetime import date, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from models.availability import Availability
from services import timezone as tz
from services.availability import open_slots_query
from services.errors import DependencyError, ValidationError

MAX_HEATMAP_DAYS = 366

_UNSET = object()


class HeatmapCache:
    """
    Per-client cache of computed heatmaps. The caller owns the instance
    (one per request or per connected client); nothing here is shared
    between callers.

    Entries are keyed by (range start, range end, location filter, service
    filter). Every entry is dropped when the location filter changes.
    Individual days are kept per filter so a range that grows only queries
    the days it has not seen yet.
    """

    def __init__(self):
        self._location_filter = _UNSET
        self._entries: Dict[Tuple, Dict[date, bool]] = {}
        self._days: Dict[Tuple, Dict[date, bool]] = {}

    def use_location_filter(self, location_id) -> None:
        if location_id != self._location_filter:
            self._entries.clear()
            self._days.clear()
            self._location_filter = location_id

    def get(self, key):
        hit = self._entries.get(key)
        return dict(hit) if hit is not None else None

    def put(self, key, heatmap: Dict[date, bool]) -> None:
        self._entries[key] = dict(heatmap)

    def known_days(self, filter_key) -> Dict[date, bool]:
        return self._days.setdefault(filter_key, {})

    def __len__(self):
        return len(self._entries)


def _days_between(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def compute_heatmap(
    start_date,
    end_date,
    location_id=None,
    service_name: Optional[str] = None,
    cache: Optional[HeatmapCache] = None,
):
    """
    Local date -> "has at least one open slot" for every day in
    [start_date, end_date]. Returns (heatmap, error).
    """
    try:
        first = tz.parse_local_date(start_date)
        last = tz.parse_local_date(end_date)
    except (TypeError, ValueError):
        return None, ValidationError("Dates must use YYYY-MM-DD")
    if last < first:
        return None, ValidationError("end must not be before start")
    if (last - first).days + 1 > MAX_HEATMAP_DAYS:
        return None, ValidationError(f"Heatmap range is limited to {MAX_HEATMAP_DAYS} days")

    key = (first, last, location_id, service_name)
    filter_key = (location_id, service_name)
    if cache is not None:
        cache.use_location_filter(location_id)
        hit = cache.get(key)
        if hit is not None:
            return hit, None
        known = cache.known_days(filter_key)
    else:
        known = {}

    missing = [d for d in _days_between(first, last) if d not in known]
    if missing:
        range_start, _ = tz.local_date_to_utc_range(missing[0])
        _, range_end = tz.local_date_to_utc_range(missing[-1])
        try:
            rows = (
                open_slots_query(range_start, range_end, location_id, service_name)
                .with_entities(Availability.start_time)
                .all()
            )
        except SQLAlchemyError as exc:
            return None, DependencyError("Could not load availability", {"reason": str(exc)})

        open_days = {tz.utc_to_local_date(row.start_time) for row in rows}
        for day in missing:
            known[day] = day in open_days

    heatmap = {day: known[day] for day in _days_between(first, last)}
    if cache is not None:
        cache.put(key, heatmap)
    return heatmap, None
