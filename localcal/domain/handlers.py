"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging

from localcal.domain.bus import EventBus
from localcal.domain.events import EventsImported, ReminderDue, SeriesDeleted
from localcal.domain.models import reminder_key
from localcal.repos.memory import ReminderLogRepository
from localcal.services.reminders import reminder_message

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories."""

    def __init__(self, bus: EventBus, reminder_log: ReminderLogRepository) -> None:
        self.bus = bus
        self.reminder_log = reminder_log
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(ReminderDue, self.on_reminder_due)
        self.bus.subscribe(SeriesDeleted, self.on_series_deleted)
        self.bus.subscribe(EventsImported, self.on_events_imported)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_reminder_due(self, event: ReminderDue) -> None:
        key = reminder_key(event.event_id, event.occurrence_start)
        if self.reminder_log.was_sent(key):
            return
        logger.info(
            "Reminder: %s - %s",
            event.title,
            reminder_message(event.occurrence_start, event.sent_at),
        )
        self.reminder_log.mark_sent(key, event.sent_at)

    def on_series_deleted(self, event: SeriesDeleted) -> None:
        self.reminder_log.forget_event(event.event_id)

    def on_events_imported(self, event: EventsImported) -> None:
        if event.skipped or event.degraded:
            logger.warning(
                "Import of %s: %d blocks skipped, %d rules degraded",
                event.path,
                event.skipped,
                event.degraded,
            )
