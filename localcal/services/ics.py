"""Service for encoding events as iCalendar (RFC 5545) text and decoding
iCalendar text back into events.

Decoding is lenient per VEVENT: a malformed block is counted and skipped, and
a recurrence rule outside the supported subset degrades the event to a single
occurrence instead of failing the import.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum, auto

from icalendar import Alarm, Calendar, Event as ICalEvent, vDDDTypes, vDuration, vText
from icalendar.parser import (
    Contentline,
    Contentlines,
    Parameters,
    split_on_unescaped_comma,
    unescape_backslash,
)
from icalendar.timezone import tzp
from pydantic import ValidationError

from localcal.config import settings
from localcal.domain.errors import ICSParseError, UnsupportedRuleError
from localcal.domain.models import (
    DEFAULT_CATEGORY,
    DEFAULT_COLOR,
    DecodeResult,
    Event,
)
from localcal.services.recurrence import compile_rrule, parse_rrule
from localcal.utils.dates import ONE_DAY, ensure_utc, is_utc_midnight, utc_midnight

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Property:
    """One content line split into name, parameters and value.

    ``raw`` keeps the value exactly as written; ``value`` has the TEXT
    backslash escapes resolved.
    """

    name: str
    params: Parameters
    raw: str

    @property
    def value(self) -> str:
        return unescape_backslash(self.raw)

    def param(self, name: str) -> str:
        value = self.params.get(name, "")
        if isinstance(value, list):
            value = value[0] if value else ""
        return str(value)

    @classmethod
    def from_line(cls, line: Contentline) -> _Property:
        try:
            name, params, raw = line.raw_parts()
        except ValueError as exc:
            raise ICSParseError(str(exc)) from exc
        return cls(name=name.upper(), params=params, raw=raw)


def _parse_instant(prop: _Property) -> tuple[datetime, bool]:
    """Return ``(utc_instant, is_date)`` for a DATE or DATE-TIME property."""
    try:
        parsed = vDDDTypes.from_ical(prop.value.strip())
    except ValueError as exc:
        raise ICSParseError(f"Invalid {prop.name} value {prop.raw!r}") from exc

    if isinstance(parsed, datetime):
        if prop.param("VALUE").upper() == "DATE":
            raise ICSParseError(f"{prop.name} declares VALUE=DATE but holds {prop.raw!r}")
        return _to_utc(parsed, prop.param("TZID")), False
    if isinstance(parsed, date):
        return utc_midnight(parsed), True
    raise ICSParseError(f"{prop.name} is not a date or date-time: {prop.raw!r}")


def _to_utc(parsed: datetime, tzid: str) -> datetime:
    if parsed.tzinfo is not None:
        return parsed.astimezone(timezone.utc)
    if not tzid:
        # Floating time: no zone information, read as UTC.
        return parsed.replace(tzinfo=timezone.utc)
    zone = tzp.timezone(tzid)
    if zone is None:
        logger.warning("Unknown TZID %r, reading time as UTC", tzid)
        return parsed.replace(tzinfo=timezone.utc)
    return tzp.localize(parsed, zone).astimezone(timezone.utc)


def parse_duration(value: str) -> timedelta:
    """Parse an RFC 5545 duration such as ``PT1H30M``, ``P1D`` or ``-PT15M``."""
    value = value.strip().upper()
    # A bare ``P`` or a ``T`` with no time part after it is not a duration.
    if value.endswith(("P", "T")):
        raise ICSParseError(f"Invalid duration {value!r}")
    try:
        return vDuration.from_ical(value)
    except ValueError as exc:
        raise ICSParseError(f"Invalid duration {value!r}") from exc


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode(events: Iterable[Event], now: datetime | None = None) -> str:
    """Serialize *events* into a single VCALENDAR.

    Recurring events are written once with an RRULE; consumers expand them.
    """
    dtstamp = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
    calendar = Calendar()
    calendar.add("version", "2.0")
    calendar.add("prodid", settings.prodid)
    calendar.add("calscale", "GREGORIAN")
    for event in events:
        calendar.add_component(_to_vevent(event, dtstamp))
    return calendar.to_ical().decode("utf-8")


def _to_vevent(event: Event, dtstamp: datetime) -> ICalEvent:
    vevent = ICalEvent()
    vevent.add("uid", f"{event.id}@{settings.uid_domain}")
    vevent.add("dtstamp", dtstamp)
    vevent.add("created", event.created_at)
    if event.all_day:
        vevent.add("dtstart", event.start.date())
        vevent.add("dtend", event.end.date())
    else:
        vevent.add("dtstart", event.start)
        vevent.add("dtend", event.end)
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)
    if event.recurrence is not None:
        vevent.add("rrule", compile_rrule(event.recurrence, event.all_day))
    if event.category and event.category != DEFAULT_CATEGORY:
        vevent.add("categories", [event.category])
    if event.color and event.color != DEFAULT_COLOR:
        vevent.add("color", vText(event.color))
    if event.zoom_link:
        # URL values cannot carry line breaks; X-ZOOM-LINK keeps the full text.
        if "\r" not in event.zoom_link and "\n" not in event.zoom_link:
            vevent.add("url", event.zoom_link)
        vevent.add("x-zoom-link", vText(event.zoom_link))
    if event.attachment_path:
        vevent.add("x-attachment-path", vText(event.attachment_path))
    if event.attachment_name:
        vevent.add("x-attachment-name", vText(event.attachment_name))
    if event.reminder_minutes > 0:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("description", "Reminder")
        alarm.add("trigger", timedelta(minutes=-event.reminder_minutes))
        vevent.add_component(alarm)
    return vevent


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _State(Enum):
    EXPECT_BEGIN_CALENDAR = auto()
    EXPECT_EVENT = auto()
    IN_EVENT = auto()
    IN_ALARM = auto()
    END_CALENDAR = auto()


@dataclass
class _Block:
    """Properties accumulated for one VEVENT."""

    properties: dict[str, list[_Property]] = field(default_factory=dict)
    alarms: list[list[_Property]] = field(default_factory=list)
    error: str | None = None

    def add(self, prop: _Property) -> None:
        self.properties.setdefault(prop.name, []).append(prop)

    def first(self, name: str) -> _Property | None:
        props = self.properties.get(name)
        return props[0] if props else None

    def text(self, name: str) -> str:
        prop = self.first(name)
        return prop.value if prop is not None else ""

    def mark_malformed(self, reason: str) -> None:
        if self.error is None:
            self.error = reason

    @property
    def label(self) -> str:
        uid = self.first("UID")
        return uid.value if uid is not None else "(no UID)"


class _Decoder:
    """State machine over unfolded content lines, one VEVENT at a time."""

    def __init__(self) -> None:
        self.state = _State.EXPECT_BEGIN_CALENDAR
        self.result = DecodeResult()
        self.block: _Block | None = None
        # Names of nested components being skipped (VTIMEZONE, VTODO, ...).
        self.skipping: list[str] = []

    def feed(self, line: Contentline) -> None:
        try:
            prop = _Property.from_line(line)
        except ICSParseError as exc:
            if self.skipping:
                return
            if self.state in (_State.IN_EVENT, _State.IN_ALARM):
                self.block.mark_malformed(str(exc))
            else:
                logger.debug("Ignoring unparsable line outside VEVENT: %s", exc)
            return

        component = prop.raw.strip().upper()
        if self.skipping:
            if prop.name == "BEGIN":
                self.skipping.append(component)
            elif prop.name == "END" and component == self.skipping[-1]:
                self.skipping.pop()
            return

        handler = {
            _State.EXPECT_BEGIN_CALENDAR: self._expect_begin_calendar,
            _State.EXPECT_EVENT: self._expect_event,
            _State.IN_EVENT: self._in_event,
            _State.IN_ALARM: self._in_alarm,
            _State.END_CALENDAR: self._end_calendar,
        }[self.state]
        handler(prop, component)

    def finish(self) -> DecodeResult:
        if self.state == _State.EXPECT_BEGIN_CALENDAR:
            raise ICSParseError("No BEGIN:VCALENDAR found")
        if self.state in (_State.IN_EVENT, _State.IN_ALARM):
            self.block.mark_malformed("VEVENT not terminated before end of input")
            self._close_block()
        elif self.state == _State.EXPECT_EVENT:
            logger.debug("Calendar ended without END:VCALENDAR")
        return self.result

    # -- states ------------------------------------------------------------

    def _expect_begin_calendar(self, prop: _Property, component: str) -> None:
        if prop.name == "BEGIN" and component == "VCALENDAR":
            self.state = _State.EXPECT_EVENT

    def _expect_event(self, prop: _Property, component: str) -> None:
        if prop.name == "BEGIN":
            if component == "VEVENT":
                self.block = _Block()
                self.state = _State.IN_EVENT
            else:
                self.skipping.append(component)
        elif prop.name == "END" and component == "VCALENDAR":
            self.state = _State.END_CALENDAR

    def _in_event(self, prop: _Property, component: str) -> None:
        if prop.name == "BEGIN":
            if component == "VEVENT":
                self.block.mark_malformed("VEVENT not terminated before next VEVENT")
                self._close_block()
                self.block = _Block()
            elif component == "VALARM":
                self.block.alarms.append([])
                self.state = _State.IN_ALARM
            else:
                self.skipping.append(component)
        elif prop.name == "END":
            if component == "VEVENT":
                self._close_block()
                self.state = _State.EXPECT_EVENT
            elif component == "VCALENDAR":
                self.block.mark_malformed("VEVENT not terminated before END:VCALENDAR")
                self._close_block()
                self.state = _State.END_CALENDAR
            else:
                self.block.mark_malformed(f"Unexpected END:{component}")
        else:
            self.block.add(prop)

    def _in_alarm(self, prop: _Property, component: str) -> None:
        if prop.name == "BEGIN":
            self.skipping.append(component)
        elif prop.name == "END":
            if component != "VALARM":
                self.block.mark_malformed(f"Unexpected END:{component} inside VALARM")
                if component == "VEVENT":
                    self._close_block()
                    self.state = _State.EXPECT_EVENT
                    return
            self.state = _State.IN_EVENT
        else:
            self.block.alarms[-1].append(prop)

    def _end_calendar(self, prop: _Property, component: str) -> None:
        # Several calendars concatenated into one file.
        if prop.name == "BEGIN" and component == "VCALENDAR":
            self.state = _State.EXPECT_EVENT

    # -- block completion --------------------------------------------------

    def _close_block(self) -> None:
        block, self.block = self.block, None
        try:
            event, degraded = _build_event(block)
        except ICSParseError as exc:
            self.result.skipped += 1
            logger.warning("Skipping VEVENT %s: %s", block.label, exc)
            return
        self.result.events.append(event)
        if degraded:
            self.result.degraded += 1


def decode(text: str) -> DecodeResult:
    """Parse ICS *text* into events.

    Returns the events plus the number of VEVENT blocks skipped as malformed
    and the number imported without their (unsupported) recurrence rule.
    Raises ``ICSParseError`` only when the text holds no calendar at all.
    """
    decoder = _Decoder()
    for line in Contentlines.from_ical(text.lstrip("\ufeff")):
        if line.strip():
            decoder.feed(line)
    result = decoder.finish()
    logger.info(
        "Decoded %d events (%d skipped, %d degraded)",
        len(result.events),
        result.skipped,
        result.degraded,
    )
    return result


def _build_event(block: _Block) -> tuple[Event, bool]:
    """Turn an accumulated block into an Event; returns ``(event, degraded)``."""
    if block.error is not None:
        raise ICSParseError(block.error)

    dtstart = block.first("DTSTART")
    if dtstart is None:
        raise ICSParseError("Missing DTSTART")
    start, all_day = _parse_instant(dtstart)
    end = _resolve_end(block, start, all_day)

    recurrence = None
    degraded = False
    rrules = block.properties.get("RRULE", [])
    if rrules:
        try:
            if len(rrules) > 1:
                raise UnsupportedRuleError("Multiple RRULE properties")
            recurrence = parse_rrule(rrules[0].raw, start)
        except UnsupportedRuleError as exc:
            logger.info("Importing %s as non-recurring: %s", block.label, exc)
            degraded = True

    zoom_link = block.text("X-ZOOM-LINK")
    if not zoom_link:
        url = block.first("URL")
        if url is not None and "zoom" in url.value.lower():
            zoom_link = url.value.strip()

    categories = block.first("CATEGORIES")
    category = split_on_unescaped_comma(categories.raw)[0].strip() if categories else ""

    fields = dict(
        title=block.text("SUMMARY"),
        start=start,
        end=end,
        all_day=all_day,
        recurrence=recurrence,
        description=block.text("DESCRIPTION"),
        category=category or DEFAULT_CATEGORY,
        color=block.text("COLOR") or DEFAULT_COLOR,
        zoom_link=zoom_link,
        attachment_path=block.text("X-ATTACHMENT-PATH"),
        attachment_name=block.text("X-ATTACHMENT-NAME"),
        reminder_minutes=_reminder_minutes(block.alarms),
        source_uid=block.text("UID") or None,
    )
    created_at = _created_at(block)
    if created_at is not None:
        fields["created_at"] = created_at

    try:
        return Event(**fields), degraded
    except ValidationError as exc:
        raise ICSParseError(f"Invalid event: {exc}") from exc


def _resolve_end(block: _Block, start: datetime, all_day: bool) -> datetime:
    dtend = block.first("DTEND")
    duration = block.first("DURATION")
    if dtend is not None:
        end, end_is_date = _parse_instant(dtend)
        if end_is_date != all_day:
            raise ICSParseError("DTSTART and DTEND have different value types")
    elif duration is not None:
        end = start + parse_duration(duration.value)
        if all_day and not is_utc_midnight(end):
            raise ICSParseError("All-day DURATION must be whole days")
    elif all_day:
        end = start + ONE_DAY
    else:
        raise ICSParseError("Missing DTEND and DURATION")

    if end <= start:
        if not all_day:
            raise ICSParseError("DTEND is not after DTSTART")
        # Some exporters write an inclusive end date for single-day events.
        end = start + ONE_DAY
    return end


def _reminder_minutes(alarms: list[list[_Property]]) -> int:
    for alarm in alarms:
        for prop in alarm:
            if prop.name != "TRIGGER":
                continue
            if prop.param("VALUE").upper() == "DATE-TIME":
                continue
            if (prop.param("RELATED") or "START").upper() != "START":
                continue
            try:
                offset = parse_duration(prop.value)
            except ICSParseError:
                continue
            minutes = int(-offset.total_seconds()) // 60
            if minutes > 0:
                return minutes
    return 0


def _created_at(block: _Block) -> datetime | None:
    prop = block.first("CREATED")
    if prop is None:
        return None
    try:
        created, is_date = _parse_instant(prop)
    except ICSParseError:
        logger.debug("Ignoring invalid CREATED on %s", block.label)
        return None
    return None if is_date else created
