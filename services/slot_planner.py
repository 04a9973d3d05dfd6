"""
Turns clicks on 30-minute slots into contiguous, bookable time blocks.

Slots are addressed by (location_id, "HH:MM") in academy-local time and
selections are tracked per location. A location's selection is always a
contiguous run of at least ``min_slots`` slots (one hour by default), or
empty.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from services import timezone as tz
from services.errors import IncompleteMinimumBlock, ValidationError

SLOT_MINUTES = 30
MIN_SLOTS = 2


def time_to_minutes(time24: str) -> int:
    hours, minutes = time24.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(time24: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(time24) + minutes)


def _wall_to_utc(local_date: date, minutes: int) -> datetime:
    if minutes >= 24 * 60:
        local_date, minutes = tz.add_days(local_date, 1), minutes - 24 * 60
    try:
        return tz.local_datetime_to_utc(local_date, minutes // 60, minutes % 60)
    except ValueError as exc:
        raise ValidationError(str(exc))


@dataclass(frozen=True)
class OpenSlot:
    location_id: int
    time24: str
    availability_id: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    service_name: Optional[str] = None

    @property
    def key(self) -> Tuple[int, str]:
        return (self.location_id, self.time24)


@dataclass(frozen=True)
class Selection:
    # location_id -> sorted "HH:MM" tuple
    by_location: Dict[int, Tuple[str, ...]] = field(default_factory=dict)

    def slots_for(self, location_id: int) -> Tuple[str, ...]:
        return self.by_location.get(location_id, ())

    def replace(self, location_id: int, times: Iterable[str]) -> "Selection":
        updated = dict(self.by_location)
        times = tuple(sorted(set(times), key=time_to_minutes))
        if times:
            updated[location_id] = times
        else:
            updated.pop(location_id, None)
        return Selection(updated)

    def clear(self, location_id: int) -> "Selection":
        return self.replace(location_id, ())

    @property
    def total_slots(self) -> int:
        return sum(len(t) for t in self.by_location.values())

    def to_dict(self) -> Dict[str, List[str]]:
        return {str(loc): list(times) for loc, times in sorted(self.by_location.items())}

    @classmethod
    def from_dict(cls, data) -> "Selection":
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("selection must be an object keyed by location id")
        out = {}
        for loc, times in data.items():
            try:
                loc_id = int(loc)
                cleaned = tuple(sorted({minutes_to_time(time_to_minutes(t)) for t in times}, key=time_to_minutes))
            except (TypeError, ValueError):
                raise ValidationError("selection entries must be lists of HH:MM times")
            if cleaned:
                out[loc_id] = cleaned
        return cls(out)


class SlotSelectionPlanner:
    def __init__(self, open_slots: Iterable[OpenSlot], min_slots: int = MIN_SLOTS, slot_minutes: int = SLOT_MINUTES):
        self.min_slots = max(int(min_slots), 1)
        self.slot_minutes = slot_minutes
        self._slots = {s.key: s for s in open_slots}

    def is_open(self, location_id: int, time24: str) -> bool:
        return (location_id, time24) in self._slots

    def toggle_slot(self, selection: Selection, location_id: int, time24: str):
        """
        Returns (new_selection, error). On error the input selection is
        returned untouched.
        """
        time24 = minutes_to_time(time_to_minutes(time24))
        current = selection.slots_for(location_id)

        if time24 in current:
            return self._deselect(selection, location_id, time24), None

        if not self.is_open(location_id, time24):
            return selection, ValidationError(
                f"Slot {time24} is not available at this location",
                {"location_id": location_id, "time": time24},
            )

        if current and time_to_minutes(time24) == time_to_minutes(current[-1]) + self.slot_minutes:
            return selection.replace(location_id, current + (time24,)), None

        # first pick, or a pick that doesn't continue the range: start a fresh block
        block = self._minimum_block(location_id, time24)
        if block is None:
            return selection, IncompleteMinimumBlock(
                f"A session needs {self.min_slots * self.slot_minutes} consecutive minutes starting at {time24}",
                {"location_id": location_id, "time": time24},
            )
        return selection.replace(location_id, block), None

    def _minimum_block(self, location_id: int, time24: str) -> Optional[List[str]]:
        block = [time24]
        for _ in range(self.min_slots - 1):
            following = add_minutes(block[-1], self.slot_minutes)
            if not self.is_open(location_id, following):
                return None
            block.append(following)
        return block

    def _deselect(self, selection: Selection, location_id: int, time24: str) -> Selection:
        current = list(selection.slots_for(location_id))
        idx = current.index(time24)
        before, after = current[:idx], current[idx + 1:]
        # an interior removal splits the range; keep the earlier run when it is long enough
        for run in (before, after):
            if len(run) >= self.min_slots:
                return selection.replace(location_id, run)
        return selection.clear(location_id)

    def is_valid(self, selection: Selection) -> bool:
        return any(len(times) >= self.min_slots for times in selection.by_location.values())

    def summarize(self, selection: Selection) -> dict:
        ranges = {}
        for loc, times in sorted(selection.by_location.items()):
            if not times:
                continue
            ranges[str(loc)] = {
                "start": times[0],
                "end": add_minutes(times[-1], self.slot_minutes),
                "slots": len(times),
            }
        total_minutes = self.slot_minutes * selection.total_slots
        return {
            "total_minutes": total_minutes,
            "duration_hours": total_minutes / 60,
            "ranges": ranges,
            "is_valid": self.is_valid(selection),
        }

    def to_booking_ranges(self, selection: Selection, local_date: Optional[date] = None) -> List[Tuple[int, datetime, datetime]]:
        """
        One (location_id, start_utc, end_utc) per location with a complete
        block. Uses the stored instants of the first and last open slot, or
        converts the wall times on ``local_date`` when a slot carries none.
        """
        out = []
        for loc, times in sorted(selection.by_location.items()):
            if len(times) < self.min_slots:
                continue
            first = self._slots.get((loc, times[0]))
            last = self._slots.get((loc, times[-1]))
            if first is None or last is None:
                raise ValidationError(
                    "Selected slots are no longer available",
                    {"location_id": loc},
                )
            start, end = first.start_time, last.end_time
            if start is None or end is None:
                if local_date is None:
                    raise ValidationError("A date is needed to book these slots", {"location_id": loc})
                start = _wall_to_utc(local_date, time_to_minutes(times[0]))
                end = _wall_to_utc(local_date, time_to_minutes(times[-1]) + self.slot_minutes)
            out.append((loc, start, end))
        return out
