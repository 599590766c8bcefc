"""Bookable slot generation.

Candidates start at the window start and advance in fixed 30 minute steps.
A candidate becomes a slot when the whole interval sits inside business
hours and does not intersect any busy interval reported by the calendar.
Intervals are half-open: ``[start, end)``.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, Iterator, List, Sequence
from zoneinfo import ZoneInfo

SLOT_STEP = timedelta(minutes=30)
MAX_SLOTS = 60
DEFAULT_WINDOW = timedelta(days=14)


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError("TimeRange start must be before end")


# The calendar reports busy blocks as plain ranges; they may overlap each other.
BusyInterval = TimeRange


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    timezone: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class BusinessHours:
    """Weekly opening hours in the business timezone (Mon-Fri 09:00-18:00)."""

    tz: ZoneInfo
    opens: time = time(9, 0)
    closes: time = time(18, 0)
    weekdays: FrozenSet[int] = field(default_factory=lambda: frozenset(range(5)))

    @property
    def timezone_name(self) -> str:
        return self.tz.key

    def contains(self, start: datetime, end: datetime) -> bool:
        """Return True when ``[start, end)`` lies within one business day."""
        local_start = start.astimezone(self.tz)
        local_end = end.astimezone(self.tz)
        if local_start.weekday() not in self.weekdays:
            return False
        if local_end.date() != local_start.date():
            return False
        return self.opens <= local_start.time() and local_end.time() <= self.closes


def overlaps(start: datetime, end: datetime, busy: Iterable[TimeRange]) -> bool:
    return any(start < interval.end and end > interval.start for interval in busy)


def subtract(busy: Sequence[TimeRange], removed: TimeRange) -> List[TimeRange]:
    """Remove ``removed`` from each busy interval, splitting where needed."""
    remaining: List[TimeRange] = []
    for interval in busy:
        if interval.end <= removed.start or interval.start >= removed.end:
            remaining.append(interval)
            continue
        if interval.start < removed.start:
            remaining.append(TimeRange(interval.start, removed.start))
        if interval.end > removed.end:
            remaining.append(TimeRange(removed.end, interval.end))
    return remaining


def default_window(now: datetime, tz: ZoneInfo) -> TimeRange:
    """Now (rounded up to the next half hour) through fourteen days out."""
    local_now = now.astimezone(tz)
    start = local_now.replace(
        minute=local_now.minute - local_now.minute % 30, second=0, microsecond=0
    )
    if start < local_now:
        start = (start.astimezone(timezone.utc) + SLOT_STEP).astimezone(tz)
    return TimeRange(start, start + DEFAULT_WINDOW)


def _aware(value: datetime, tz: ZoneInfo) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=tz)


def iter_slots(
    window: TimeRange,
    duration_minutes: int,
    busy: Iterable[TimeRange],
    hours: BusinessHours,
) -> Iterator[Slot]:
    """Lazily yield free slots inside ``window`` in chronological order.

    Each call returns a fresh generator, so the sequence can be restarted.
    Stepping happens in UTC so DST transitions do not shift the grid.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    duration = timedelta(minutes=duration_minutes)
    busy = list(busy)
    current = _aware(window.start, hours.tz).astimezone(timezone.utc)
    window_end = _aware(window.end, hours.tz).astimezone(timezone.utc)

    # Bounded by remaining time so stepping never passes datetime.max.
    while window_end - current >= duration:
        candidate_end = current + duration
        if hours.contains(current, candidate_end) and not overlaps(
            current, candidate_end, busy
        ):
            yield Slot(
                start=current.astimezone(hours.tz),
                end=candidate_end.astimezone(hours.tz),
                timezone=hours.timezone_name,
            )
        if window_end - current < SLOT_STEP + duration:
            break
        current += SLOT_STEP


def find_slots(
    window: TimeRange,
    duration_minutes: int,
    busy: Iterable[TimeRange],
    hours: BusinessHours,
    *,
    limit: int = MAX_SLOTS,
) -> List[Slot]:
    return list(itertools.islice(iter_slots(window, duration_minutes, busy, hours), limit))
