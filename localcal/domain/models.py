"""Domain models for the calendar core."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from pathlib import Path

from pydantic import (
    BaseModel,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from localcal.utils.dates import ONE_DAY, all_day_bounds, ensure_utc, is_utc_midnight

DEFAULT_CATEGORY = "default"
DEFAULT_COLOR = "#3b82f6"


class RecurrenceUnit(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class RecurrenceRule(BaseModel):
    """Repeat every ``interval`` units, optionally until a date (inclusive)."""

    unit: RecurrenceUnit
    interval: int = Field(default=1, ge=1)
    until: date | None = None


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    recurrence: RecurrenceRule | None = None
    description: str = ""
    category: str = DEFAULT_CATEGORY
    color: str = DEFAULT_COLOR
    zoom_link: str = ""
    attachment_path: str = ""
    attachment_name: str = ""
    reminder_minutes: int = Field(default=0, ge=0)
    source_uid: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("start", "end", "created_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value).replace(microsecond=0)

    @model_validator(mode="after")
    def _check_span(self) -> Event:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        if self.all_day and not (
            is_utc_midnight(self.start) and is_utc_midnight(self.end)
        ):
            raise ValueError("all-day events must start and end at UTC midnight")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def display_end(self) -> datetime:
        """End as shown to the user: the last included day for all-day events."""
        if self.all_day:
            return self.end - ONE_DAY
        return self.end


class Occurrence(BaseModel):
    """One concrete, derived instance of an Event. Never persisted."""

    source_event_id: str
    start: datetime
    end: datetime


def reminder_key(event_id: str, occurrence_start: datetime) -> str:
    return f"{event_id}:{ensure_utc(occurrence_start).isoformat()}"


class Reminder(BaseModel):
    event_id: str
    title: str
    occurrence_start: datetime
    trigger_time: datetime

    @property
    def key(self) -> str:
        return reminder_key(self.event_id, self.occurrence_start)


# ---------------------------------------------------------------------------
# Codec / interchange results
# ---------------------------------------------------------------------------


class DecodeResult(BaseModel):
    events: list[Event] = Field(default_factory=list)
    skipped: int = 0
    degraded: int = 0


class ImportResult(BaseModel):
    path: Path
    imported: int
    skipped: int
    degraded: int
    event_ids: list[str] = Field(default_factory=list)


class ExportResult(BaseModel):
    path: Path
    exported: int


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class EventInput(BaseModel):
    """Payload produced by the event form.

    For all-day events ``start`` and ``end`` name the first and the last
    included day; their time of day is ignored.
    """

    title: str = Field(min_length=1)
    start: datetime
    end: datetime
    all_day: bool = False
    recurrence: RecurrenceRule | None = None
    description: str = ""
    category: str = DEFAULT_CATEGORY
    color: str = DEFAULT_COLOR
    zoom_link: str = ""
    attachment_path: str = ""
    attachment_name: str = ""
    reminder_minutes: int = Field(default=0, ge=0)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value

    @field_validator("category", "color")
    @classmethod
    def _fill_defaults(cls, value: str, info: ValidationInfo) -> str:
        if value:
            return value
        return DEFAULT_CATEGORY if info.field_name == "category" else DEFAULT_COLOR

    @model_validator(mode="after")
    def _end_after_start(self) -> EventInput:
        if self.all_day:
            if self.end.date() < self.start.date():
                raise ValueError("end date must not be before start date")
        elif ensure_utc(self.end) <= ensure_utc(self.start):
            raise ValueError("end must be after start")
        return self

    def to_event(self, **identity) -> Event:
        """Build an Event; *identity* may carry ``id`` and ``created_at``."""
        if self.all_day:
            start, end = all_day_bounds(self.start.date(), self.end.date())
        else:
            start, end = self.start, self.end
        fields = self.model_dump(exclude={"start", "end", "recurrence"})
        return Event(
            start=start,
            end=end,
            recurrence=self.recurrence,
            **fields,
            **identity,
        )


class ImportRequest(BaseModel):
    path: Path


class ExportRequest(BaseModel):
    path: Path | None = None
