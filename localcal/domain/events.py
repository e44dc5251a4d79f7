"""Domain events emitted by calendar operations."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel


class SeriesDeleted(BaseModel):
    """Fired when an event row, and with it every occurrence, is deleted."""

    event_id: str


class EventsImported(BaseModel):
    """Fired after an ICS file has been imported."""

    path: Path
    event_ids: list[str]
    skipped: int
    degraded: int


class ReminderDue(BaseModel):
    """Fired when an occurrence's reminder time has been reached (via /tick)."""

    event_id: str
    title: str
    occurrence_start: datetime
    sent_at: datetime
