"""Tests for event validation and the all-day exclusive-end convention."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from localcal.domain.models import (
    DEFAULT_CATEGORY,
    DEFAULT_COLOR,
    Event,
    EventInput,
    RecurrenceRule,
    RecurrenceUnit,
)
from localcal.utils.dates import all_day_bounds


def test_single_day_all_day_event_has_exclusive_end():
    """An all-day event on 2024-06-01 spans midnight to next midnight."""
    event = EventInput(
        title="Conference",
        start=datetime(2024, 6, 1),
        end=datetime(2024, 6, 1),
        all_day=True,
    ).to_event()

    assert event.start == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert event.end == datetime(2024, 6, 2, tzinfo=timezone.utc)
    assert event.display_end.date() == date(2024, 6, 1)


def test_all_day_input_ignores_time_of_day():
    event = EventInput(
        title="Trip",
        start=datetime(2024, 6, 1, 15, 30),
        end=datetime(2024, 6, 3, 8, 0),
        all_day=True,
    ).to_event()

    assert event.start == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert event.end == datetime(2024, 6, 4, tzinfo=timezone.utc)


def test_all_day_bounds_rejects_reversed_days():
    with pytest.raises(ValueError):
        all_day_bounds(date(2024, 6, 2), date(2024, 6, 1))


def test_end_must_be_after_start():
    start = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        Event(title="Zero length", start=start, end=start)
    with pytest.raises(ValidationError):
        Event(title="Backwards", start=start, end=start - timedelta(hours=1))


def test_all_day_event_must_sit_on_midnights():
    with pytest.raises(ValidationError):
        Event(
            title="Odd",
            start=datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc),
            end=datetime(2024, 6, 2, 9, 0, tzinfo=timezone.utc),
            all_day=True,
        )


def test_instants_are_normalized_to_utc_seconds():
    plus_two = timezone(timedelta(hours=2))
    event = Event(
        title="Call",
        start=datetime(2024, 6, 1, 11, 0, 0, 123456, tzinfo=plus_two),
        end=datetime(2024, 6, 1, 12, 0),
    )

    assert event.start == datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    assert event.start.tzinfo == timezone.utc
    assert event.end == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_interval_must_be_positive():
    with pytest.raises(ValidationError):
        RecurrenceRule(unit=RecurrenceUnit.DAILY, interval=0)


def test_unknown_unit_is_rejected():
    with pytest.raises(ValidationError):
        RecurrenceRule(unit="hourly")


def test_missing_or_blank_title_is_rejected():
    start = datetime(2024, 6, 1, 9, 0)
    with pytest.raises(ValidationError):
        EventInput(title="", start=start, end=start + timedelta(hours=1))
    with pytest.raises(ValidationError):
        EventInput(title="   ", start=start, end=start + timedelta(hours=1))


def test_input_rejects_end_before_start():
    start = datetime(2024, 6, 1, 9, 0)
    with pytest.raises(ValidationError):
        EventInput(title="Backwards", start=start, end=start - timedelta(minutes=5))
    with pytest.raises(ValidationError):
        EventInput(
            title="Backwards days",
            start=start,
            end=start - timedelta(days=1),
            all_day=True,
        )


def test_input_fills_default_category_and_color():
    start = datetime(2024, 6, 1, 9, 0)
    event = EventInput(
        title="Lunch",
        start=start,
        end=start + timedelta(hours=1),
        category="",
        color="",
    ).to_event()

    assert event.category == DEFAULT_CATEGORY
    assert event.color == DEFAULT_COLOR


def test_to_event_keeps_supplied_identity():
    start = datetime(2024, 6, 1, 9, 0)
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    event = EventInput(title="Lunch", start=start, end=start + timedelta(hours=1)).to_event(
        id="fixed-id", created_at=created
    )

    assert event.id == "fixed-id"
    assert event.created_at == created
