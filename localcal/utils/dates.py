"""Date and time helpers shared by the models and the ICS codec."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

ONE_DAY = timedelta(days=1)


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime; naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def is_utc_midnight(dt: datetime) -> bool:
    dt = ensure_utc(dt)
    return dt.time() == time.min


def all_day_bounds(first_day: date, last_day: date) -> tuple[datetime, datetime]:
    """Return the ``(start, end)`` instants for an all-day span.

    *last_day* is the last included day; the returned end is midnight of the
    following day, so a single-day event spans exactly 24 hours.
    """
    if last_day < first_day:
        raise ValueError("last_day must not be before first_day")
    return utc_midnight(first_day), utc_midnight(last_day) + ONE_DAY
