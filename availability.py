"""Table availability checks.

Slots are compared on time of day only: a reservation's ``booking_date``
says which day it is, its start/end timestamps say when during that day.
"""
from __future__ import annotations
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Union

from errors import ValidationError
from schemas import Reservation, ReservationStatus, Table
from settings import EngineSettings

_REFERENCE_DAY = date(2099, 1, 1)

DayLike = Union[date, datetime]


def _day(value: DayLike) -> date:
    return value.date() if isinstance(value, datetime) else value


def day_difference(a: DayLike, b: DayLike) -> int:
    """Whole days from ``a`` to ``b``, ignoring time of day."""
    return (_day(b) - _day(a)).days


def same_day(a: DayLike, b: DayLike) -> bool:
    return day_difference(a, b) == 0


def time_of_day(value: datetime) -> datetime:
    """Pin a timestamp to a fixed reference date so only hours and minutes differ."""
    return datetime.combine(_REFERENCE_DAY, value.time())


def overlaps(start: datetime, end: datetime, existing_start: datetime, existing_end: datetime, mode: str = "symmetric") -> bool:
    s, e = time_of_day(start), time_of_day(end)
    es, ee = time_of_day(existing_start), time_of_day(existing_end)
    if mode == "legacy":
        # Only checks where the candidate's own endpoints land.
        return (es <= s < ee) or (es < e <= ee)
    return es < e and s < ee


def is_table_free(
    table: Table,
    reservations: Iterable[Reservation],
    day: DayLike,
    start: datetime,
    end: datetime,
    party_size: int,
    mode: str = "symmetric",
    exclude_id: Optional[str] = None,
) -> bool:
    if party_size > table.capacity:
        return False
    for r in reservations:
        if r.table_id != table.id or r.id == exclude_id:
            continue
        if r.status != ReservationStatus.CONFIRMED:
            continue
        if same_day(r.booking_date, day) and overlaps(start, end, r.time_slot_start, r.time_slot_end, mode):
            return False
    return True


def find_free_tables(
    tables: Iterable[Table],
    reservations: Iterable[Reservation],
    day: DayLike,
    start: datetime,
    end: datetime,
    party_size: int,
    mode: str = "symmetric",
    exclude_id: Optional[str] = None,
) -> List[Table]:
    """Tables that can seat the party for the slot, smallest first."""
    by_table: Dict[str, List[Reservation]] = defaultdict(list)
    for r in reservations:
        if r.table_id:
            by_table[r.table_id].append(r)
    free = [
        t for t in tables
        if is_table_free(t, by_table.get(t.id, []), day, start, end, party_size, mode, exclude_id)
    ]
    return sorted(free, key=lambda t: (t.capacity, t.no))


def validate_booking_window(settings: EngineSettings, day: date, start: datetime, end: datetime, now: datetime) -> None:
    """Reject slots outside working hours, outside the duration bounds, or in the past.

    Both timestamps must fall on ``day`` itself, so a stored slot always has
    ``time_slot_start < time_slot_end``.
    """
    if start.date() != day:
        raise ValidationError("Start time must be on the booking date", field="time_slot_start")
    if end.date() != day:
        raise ValidationError("End time must be on the booking date", field="time_slot_end")

    s, e = time_of_day(start), time_of_day(end)
    if s >= e:
        raise ValidationError("Start time must be before end time", field="time_slot_end")

    opens = time(settings.working_hours_start)
    closes = time(settings.working_hours_end)
    if start.time() < opens or start.time() > closes:
        raise ValidationError(
            f"Start time must be between {settings.working_hours_start}:00 and {settings.working_hours_end}:00",
            field="time_slot_start",
        )
    if end.time() < opens or end.time() > closes:
        raise ValidationError(
            f"End time must be between {settings.working_hours_start}:00 and {settings.working_hours_end}:00",
            field="time_slot_end",
        )

    duration = e - s
    if duration < settings.min_booking:
        raise ValidationError(f"Booking time should be at least {_fmt(settings.min_booking)}", field="time_slot_end")
    if duration > settings.max_booking:
        raise ValidationError(f"Booking time should be at most {_fmt(settings.max_booking)}", field="time_slot_end")

    if datetime.combine(day, start.time()) <= now:
        raise ValidationError("Booking must start in the future", field="time_slot_start")


def _fmt(delta: timedelta) -> str:
    minutes = int(delta.total_seconds() // 60)
    if minutes % 60 == 0:
        return f"{minutes // 60}h"
    return f"{minutes}m"
