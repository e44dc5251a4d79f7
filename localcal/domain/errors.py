"""Exceptions raised by the calendar core."""


class CalendarError(Exception):
    """Base exception for calendar errors."""


class EventNotFoundError(CalendarError):
    """Raised when an event id is not present in the store."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class RecurrenceConfigError(CalendarError):
    """Raised when a recurrence rule cannot be expanded (bad interval or unit)."""


class ICSParseError(CalendarError):
    """Raised when ICS text, or a single VEVENT block, is malformed."""


class UnsupportedRuleError(CalendarError):
    """Raised when an RRULE is valid iCalendar but outside the supported subset."""


class CalendarIOError(CalendarError):
    """Raised when a calendar file cannot be read or written."""
