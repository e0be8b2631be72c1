"""
Interval overlap and simultaneous-occupancy primitives.

Intervals are half-open ``[start_ms, end_ms)`` in integer milliseconds, so
back-to-back bookings (one ends exactly when the next starts) never overlap.
Invalid intervals (``end_ms <= start_ms``) are ignored rather than rejected:
old rows with broken times must not take down a capacity check.
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Interval:
    start_ms: int
    end_ms: int


def to_millis(value: datetime) -> int:
    """Epoch milliseconds; naive datetimes are read as UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def interval_between(start: datetime, end: datetime) -> Interval:
    return Interval(to_millis(start), to_millis(end))


def is_valid_interval(interval: Interval) -> bool:
    return interval.end_ms > interval.start_ms


def overlaps(a: Interval, b: Interval) -> bool:
    return a.start_ms < b.end_ms and a.end_ms > b.start_ms


def max_simultaneous(intervals: list[Interval]) -> int:
    """
    Largest number of intervals active at the same instant (sweep line).

    Each valid interval contributes a +1 event at its start and a -1 event
    at its end. Events are sorted by time with departures first on ties,
    which keeps touching intervals from counting as simultaneous.
    """
    events = []
    for interval in intervals:
        if not is_valid_interval(interval):
            continue
        events.append((interval.start_ms, 1))
        events.append((interval.end_ms, -1))

    # (time, -1) sorts before (time, 1)
    events.sort()

    current = 0
    peak = 0
    for _, delta in events:
        current += delta
        if current > peak:
            peak = current
    return peak


def from_millis(value: int) -> datetime:
    """Naive UTC datetime for epoch milliseconds"""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)
