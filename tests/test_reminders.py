"""Tests for reminder scheduling across occurrences."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from localcal.domain.models import Event, RecurrenceRule, RecurrenceUnit
from localcal.services.reminders import due_reminders, reminder_message

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _make_event(start: datetime, **overrides) -> Event:
    defaults = dict(
        title="Dentist",
        start=start,
        end=start + timedelta(hours=1),
        reminder_minutes=30,
    )
    defaults.update(overrides)
    return Event(**defaults)


def test_reminder_due_within_lead_time():
    event = _make_event(_NOW + timedelta(minutes=20))
    reminders = due_reminders([event], _NOW)

    assert len(reminders) == 1
    assert reminders[0].event_id == event.id
    assert reminders[0].trigger_time == event.start - timedelta(minutes=30)


def test_reminder_not_due_yet():
    event = _make_event(_NOW + timedelta(minutes=45))
    assert due_reminders([event], _NOW) == []


def test_started_event_is_not_reminded():
    event = _make_event(_NOW - timedelta(minutes=1))
    assert due_reminders([event], _NOW) == []


def test_events_without_reminder_are_ignored():
    event = _make_event(_NOW + timedelta(minutes=5), reminder_minutes=0)
    assert due_reminders([event], _NOW) == []


def test_recurring_event_reminds_for_current_occurrence():
    """A daily series anchored weeks ago still reminds for today's occurrence."""
    event = _make_event(
        _NOW - timedelta(days=30) + timedelta(minutes=10),
        recurrence=RecurrenceRule(unit=RecurrenceUnit.DAILY),
    )
    reminders = due_reminders([event], _NOW)

    assert len(reminders) == 1
    assert reminders[0].occurrence_start == _NOW + timedelta(minutes=10)
    assert reminders[0].key == f"{event.id}:{(_NOW + timedelta(minutes=10)).isoformat()}"


def test_reminder_message_wording():
    assert reminder_message(_NOW, _NOW) == "Starting now!"
    assert reminder_message(_NOW + timedelta(minutes=15), _NOW) == "Starting in 15 minutes"
    assert reminder_message(_NOW + timedelta(minutes=90), _NOW) == "Starting in 1h 30m"
    assert reminder_message(_NOW + timedelta(hours=2), _NOW) == "Starting in 2 hour(s)"
