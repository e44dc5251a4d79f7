"""FastAPI application: entry point for the calendar service."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from localcal.config import settings
from localcal.domain.bus import EventBus
from localcal.domain.errors import CalendarIOError, EventNotFoundError, ICSParseError
from localcal.domain.events import EventsImported, ReminderDue, SeriesDeleted
from localcal.domain.handlers import HandlerRegistry
from localcal.domain.models import (
    Event,
    EventInput,
    ExportRequest,
    ExportResult,
    ImportRequest,
    ImportResult,
    Occurrence,
)
from localcal.repos.memory import EventRepository, ReminderLogRepository
from localcal.services.interchange import export_calendar, import_calendar
from localcal.services.recurrence import expand_all
from localcal.services.reminders import due_reminders
from localcal.utils.dates import ensure_utc
from localcal.utils.logging import setup_logging

setup_logging(settings.log_level, settings.log_file)

app = FastAPI(title="Local Calendar Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_repo = EventRepository()
reminder_log = ReminderLogRepository()

handler_registry = HandlerRegistry(bus=event_bus, reminder_log=reminder_log)


# ── Error mapping ─────────────────────────────────────────────────────


@app.exception_handler(EventNotFoundError)
def _not_found(request: Request, exc: EventNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ICSParseError)
@app.exception_handler(CalendarIOError)
def _bad_calendar_file(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ── Routes ────────────────────────────────────────────────────────────


@app.post("/events", response_model=Event)
def create_event(payload: EventInput) -> Event:
    """Create an event from the form payload."""
    event = payload.to_event()
    event_repo.insert(event)
    return event


@app.get("/events", response_model=list[Event])
def list_events(q: str | None = None) -> list[Event]:
    """Return all stored events, or those whose title/description match *q*."""
    if q:
        return event_repo.search(q)
    return event_repo.list()


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    event = event_repo.get(event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    return event


@app.put("/events/{event_id}", response_model=Event)
def update_event(event_id: str, payload: EventInput) -> Event:
    """Replace an event's fields; its id and creation time are kept."""
    return event_repo.update(event_id, payload.to_event())


@app.delete("/events/{event_id}")
def delete_event(event_id: str) -> dict:
    """Delete an event. For a recurring event every occurrence goes with it."""
    event_repo.delete(event_id)
    event_bus.publish(SeriesDeleted(event_id=event_id))
    return {"status": "deleted"}


@app.get("/occurrences", response_model=list[Occurrence])
def list_occurrences(start: datetime, end: datetime) -> list[Occurrence]:
    """Expand every event over the visible window ``[start, end)``."""
    if ensure_utc(end) <= ensure_utc(start):
        raise HTTPException(status_code=400, detail="end must be after start")
    return list(expand_all(event_repo.list(), start, end))


@app.post("/import", response_model=ImportResult)
def import_ics(body: ImportRequest) -> ImportResult:
    """Import every VEVENT of an ``.ics`` file chosen by the host UI."""
    result = import_calendar(event_repo, body.path)
    event_bus.publish(
        EventsImported(
            path=result.path,
            event_ids=result.event_ids,
            skipped=result.skipped,
            degraded=result.degraded,
        )
    )
    return result


@app.post("/export", response_model=ExportResult)
def export_ics(body: ExportRequest) -> ExportResult:
    """Write all events to an ``.ics`` file; returns the written path."""
    return export_calendar(event_repo, body.path)


@app.post("/tick")
def tick(now: datetime | None = None) -> dict:
    """Fire reminders whose trigger time has been reached.

    Pass *now* as a query param to control the simulated clock.
    Defaults to ``datetime.now(timezone.utc)`` when omitted.
    """
    current_time = ensure_utc(now) if now else datetime.now(timezone.utc)

    fired: list[str] = []
    for reminder in due_reminders(event_repo.list(), current_time):
        if reminder_log.was_sent(reminder.key):
            continue
        event_bus.publish(
            ReminderDue(
                event_id=reminder.event_id,
                title=reminder.title,
                occurrence_start=reminder.occurrence_start,
                sent_at=current_time,
            )
        )
        fired.append(reminder.key)

    return {"time": current_time.isoformat(), "reminders_fired": fired}
