"""Service for finding due reminders across event occurrences."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from localcal.domain.errors import RecurrenceConfigError
from localcal.domain.models import Event, Reminder
from localcal.services.recurrence import expand
from localcal.utils.dates import ensure_utc


def due_reminders(events: Iterable[Event], now: datetime) -> list[Reminder]:
    """Return reminders whose trigger time has been reached.

    An occurrence is due when it has not started yet and starts within the
    event's ``reminder_minutes`` of *now*. Recurring events contribute one
    reminder per occurrence.
    """
    now = ensure_utc(now)
    reminders: list[Reminder] = []
    for event in events:
        if event.reminder_minutes <= 0:
            continue
        lead = timedelta(minutes=event.reminder_minutes)
        try:
            occurrences = expand(event, now, now + lead + timedelta(seconds=1))
        except RecurrenceConfigError:
            continue
        for occurrence in occurrences:
            if now < occurrence.start <= now + lead:
                reminders.append(
                    Reminder(
                        event_id=event.id,
                        title=event.title,
                        occurrence_start=occurrence.start,
                        trigger_time=occurrence.start - lead,
                    )
                )
    reminders.sort(key=lambda r: (r.occurrence_start, r.event_id))
    return reminders


def reminder_message(occurrence_start: datetime, now: datetime) -> str:
    minutes = int((ensure_utc(occurrence_start) - ensure_utc(now)).total_seconds() // 60)
    if minutes <= 0:
        return "Starting now!"
    if minutes < 60:
        return f"Starting in {minutes} minutes"
    hours, mins = divmod(minutes, 60)
    if mins:
        return f"Starting in {hours}h {mins}m"
    return f"Starting in {hours} hour(s)"
