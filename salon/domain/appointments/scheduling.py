"""Booking time rules: past-scheduling window, working hours and staff eligibility"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ...config import APP_TIMEZONE

MAX_PAST_SCHEDULE_HOURS = 24
MAX_PAST_SCHEDULE = timedelta(hours=MAX_PAST_SCHEDULE_HOURS)

BUSINESS_TZ = ZoneInfo(APP_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken as business-local wall time"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=BUSINESS_TZ)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    """Naive UTC, the form appointment times are persisted in"""
    return as_utc(value).replace(tzinfo=None)


def from_storage(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def is_within_past_scheduling_window(starts_at: datetime, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return as_utc(starts_at) >= as_utc(now) - MAX_PAST_SCHEDULE


def _minutes(value: Any) -> Optional[int]:
    """'HH:MM' (or 'HH') to minutes after midnight"""
    if not value or not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        return None
    return hours * 60 + minutes


def weekday_number(value: datetime) -> int:
    """0 = Sunday ... 6 = Saturday"""
    return (value.isoweekday()) % 7


def is_within_working_hours(slots: Optional[list], starts_at: datetime, duration_minutes: int) -> bool:
    """
    True when [starts_at, starts_at + duration) fits the slot for that weekday.

    An empty or missing schedule means no restriction. A configured schedule
    with no slot for the day (or a slot with a blank bound) rejects.
    """
    if not isinstance(slots, list) or not slots:
        return True

    local = as_utc(starts_at).astimezone(BUSINESS_TZ)
    day = weekday_number(local)
    slot = next((s for s in slots if isinstance(s, dict) and s.get("day") == day), None)
    if slot is None:
        return False

    allowed_start = _minutes(slot.get("start"))
    allowed_end = _minutes(slot.get("end"))
    if allowed_start is None or allowed_end is None:
        return False

    start_minute = local.hour * 60 + local.minute
    return start_minute >= allowed_start and start_minute + duration_minutes <= allowed_end


def is_staff_enabled(enabled_staff_ids: Optional[list], staff_id: int) -> bool:
    if not isinstance(enabled_staff_ids, list) or not enabled_staff_ids:
        return True
    return staff_id in enabled_staff_ids
