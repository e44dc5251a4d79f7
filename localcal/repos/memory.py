"""In-memory repositories for events and sent reminders."""

from __future__ import annotations

from datetime import datetime

from localcal.domain.errors import EventNotFoundError
from localcal.domain.models import Event


class EventRepository:
    """Dict-backed store for Event rows, keyed by id.

    Recurring events are stored once; their occurrences are never stored.
    """

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    def list(self) -> list[Event]:
        return sorted(self._store.values(), key=lambda e: (e.start, e.id))

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def insert(self, event: Event) -> str:
        self._store[event.id] = event
        return event.id

    def update(self, event_id: str, event: Event) -> Event:
        """Replace the stored event, keeping its id and creation time."""
        existing = self._store.get(event_id)
        if existing is None:
            raise EventNotFoundError(event_id)
        updated = event.model_copy(
            update={"id": existing.id, "created_at": existing.created_at}
        )
        self._store[event_id] = updated
        return updated

    def delete(self, event_id: str) -> None:
        """Delete an event row; for a recurring event this removes the series."""
        if self._store.pop(event_id, None) is None:
            raise EventNotFoundError(event_id)

    def search(self, query: str) -> list[Event]:
        """Case-insensitive substring match on title and description."""
        needle = query.casefold()
        return [
            e
            for e in self.list()
            if needle in e.title.casefold() or needle in e.description.casefold()
        ]


class ReminderLogRepository:
    """Remembers which occurrence reminders were already sent."""

    def __init__(self) -> None:
        self._sent: dict[str, datetime] = {}

    def was_sent(self, key: str) -> bool:
        return key in self._sent

    def mark_sent(self, key: str, sent_at: datetime) -> None:
        self._sent[key] = sent_at

    def forget_event(self, event_id: str) -> None:
        prefix = f"{event_id}:"
        for key in [k for k in self._sent if k.startswith(prefix)]:
            del self._sent[key]

    def list_sent(self) -> dict[str, datetime]:
        return dict(self._sent)
