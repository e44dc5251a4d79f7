"""Service for expanding recurring events into occurrences and for mapping
recurrence rules to and from iCalendar RRULE strings."""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta, timezone

from dateutil.relativedelta import relativedelta
from icalendar import vRecur

from localcal.config import settings
from localcal.domain.errors import RecurrenceConfigError, UnsupportedRuleError
from localcal.domain.models import Event, Occurrence, RecurrenceRule, RecurrenceUnit
from localcal.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

_FREQ_TO_UNIT = {
    "DAILY": RecurrenceUnit.DAILY,
    "WEEKLY": RecurrenceUnit.WEEKLY,
    "MONTHLY": RecurrenceUnit.MONTHLY,
    "YEARLY": RecurrenceUnit.YEARLY,
}
_UNIT_TO_FREQ = {unit: freq for freq, unit in _FREQ_TO_UNIT.items()}

# RRULE parts we understand; WKST only affects BYDAY/BYWEEKNO expansion,
# which is never present in a supported rule.
_SUPPORTED_PARTS = {"FREQ", "INTERVAL", "UNTIL", "COUNT", "WKST"}


# ---------------------------------------------------------------------------
# Stepping
# ---------------------------------------------------------------------------


def step(anchor: datetime, unit: RecurrenceUnit, count: int) -> datetime:
    """Return the instant ``count`` units after *anchor*.

    Monthly and yearly steps clamp to the last day of a shorter target month.
    Callers always step from the series anchor, so the clamp never carries over
    into later occurrences.
    """
    if unit == RecurrenceUnit.DAILY:
        return anchor + timedelta(days=count)
    if unit == RecurrenceUnit.WEEKLY:
        return anchor + timedelta(weeks=count)
    if unit == RecurrenceUnit.MONTHLY:
        return anchor + relativedelta(months=count)
    if unit == RecurrenceUnit.YEARLY:
        return anchor + relativedelta(years=count)
    raise RecurrenceConfigError(f"Unrecognized recurrence unit: {unit!r}")


def nth_occurrence_start(anchor: datetime, rule: RecurrenceRule, n: int) -> datetime:
    """Start of the *n*-th occurrence (1-based) of a series anchored at *anchor*."""
    if n < 1:
        raise ValueError("n must be at least 1")
    return step(anchor, rule.unit, rule.interval * (n - 1))


def _check_rule(rule: RecurrenceRule) -> None:
    if rule.interval is None or rule.interval <= 0:
        raise RecurrenceConfigError(
            f"Recurrence interval must be positive, got {rule.interval!r}"
        )
    if rule.unit not in _UNIT_TO_FREQ:
        raise RecurrenceConfigError(f"Unrecognized recurrence unit: {rule.unit!r}")


def _first_useful_index(
    anchor: datetime, rule: RecurrenceRule, earliest_start: datetime
) -> int:
    """Smallest step index worth examining.

    Every index below the returned one yields an occurrence that starts
    before *earliest_start* (i.e. ends at or before the window start).
    """
    if earliest_start <= anchor:
        return 0
    if rule.unit in (RecurrenceUnit.DAILY, RecurrenceUnit.WEEKLY):
        days = 1 if rule.unit == RecurrenceUnit.DAILY else 7
        step_size = timedelta(days=days * rule.interval)
        return (earliest_start - anchor) // step_size
    if rule.unit == RecurrenceUnit.MONTHLY:
        months = (earliest_start.year - anchor.year) * 12 + (
            earliest_start.month - anchor.month
        )
        return max(0, (months - 1) // rule.interval)
    years = earliest_start.year - anchor.year
    return max(0, (years - 1) // rule.interval)


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


def expand(
    event: Event,
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int | None = None,
) -> Iterator[Occurrence]:
    """Return the occurrences of *event* intersecting ``[window_start, window_end)``.

    The result is a lazy iterator ordered by start. Calling ``expand`` again
    with the same arguments yields the same sequence.

    Raises ``RecurrenceConfigError`` immediately (before iteration) when the
    event's rule has a non-positive interval or an unknown unit.
    """
    window_start = ensure_utc(window_start)
    window_end = ensure_utc(window_end)
    if event.recurrence is not None:
        _check_rule(event.recurrence)
    limit = max_occurrences if max_occurrences is not None else settings.max_occurrences
    return _iter_occurrences(event, window_start, window_end, limit)


def _iter_occurrences(
    event: Event,
    window_start: datetime,
    window_end: datetime,
    limit: int,
) -> Iterator[Occurrence]:
    rule = event.recurrence
    if rule is None:
        if event.start < window_end and event.end > window_start:
            yield Occurrence(source_event_id=event.id, start=event.start, end=event.end)
        return

    duration = event.end - event.start
    try:
        earliest_start = window_start - duration
    except OverflowError:
        # Window opens near datetime.min; every occurrence is a candidate.
        earliest_start = datetime.min.replace(tzinfo=timezone.utc)
    index = _first_useful_index(event.start, rule, earliest_start)
    emitted = 0
    while True:
        try:
            start = step(event.start, rule.unit, rule.interval * index)
        except (OverflowError, ValueError):
            # Stepped past the last representable date.
            return
        if rule.until is not None and start.date() > rule.until:
            return
        if start >= window_end:
            return
        index += 1
        try:
            end = start + duration
        except OverflowError:
            return
        if end <= window_start:
            continue
        if emitted >= limit:
            logger.warning(
                "Stopped expanding event %s after %d occurrences", event.id, limit
            )
            return
        emitted += 1
        yield Occurrence(source_event_id=event.id, start=start, end=end)


def expand_all(
    events: Iterable[Event],
    window_start: datetime,
    window_end: datetime,
) -> Iterator[Occurrence]:
    """Merge the occurrences of many events, ordered by (start, source_event_id).

    Events whose recurrence rule is misconfigured are logged and skipped.
    """
    streams: list[Iterator[Occurrence]] = []
    for event in events:
        try:
            streams.append(expand(event, window_start, window_end))
        except RecurrenceConfigError as exc:
            logger.warning("Skipping event %s: %s", event.id, exc)
    return heapq.merge(*streams, key=lambda o: (o.start, o.source_event_id))


# ---------------------------------------------------------------------------
# RRULE mapping
# ---------------------------------------------------------------------------


def compile_rrule(rule: RecurrenceRule, all_day: bool) -> vRecur:
    """Compile a RecurrenceRule into an RRULE value, e.g. ``FREQ=WEEKLY;INTERVAL=2``.

    ``UNTIL`` takes the value type of DTSTART: a date for all-day events and the
    last second of that UTC day for timed events.
    """
    _check_rule(rule)
    recur = vRecur(freq=_UNIT_TO_FREQ[rule.unit], interval=rule.interval)
    if rule.until is not None:
        if all_day:
            recur["UNTIL"] = [rule.until]
        else:
            recur["UNTIL"] = [
                datetime.combine(rule.until, time(23, 59, 59), tzinfo=timezone.utc)
            ]
    return recur


def parse_rrule(value: str | vRecur, dtstart: datetime) -> RecurrenceRule:
    """Parse an RRULE value into a RecurrenceRule anchored at *dtstart*.

    Only ``FREQ``, ``INTERVAL``, ``UNTIL`` and ``COUNT`` are honoured (``WKST``
    is ignored). Anything else raises ``UnsupportedRuleError``. A ``COUNT`` is
    converted to the date of its last occurrence.
    """
    if isinstance(value, str):
        value = value.strip()
    try:
        recur = vRecur.from_ical(value)
    except ValueError as exc:
        raise UnsupportedRuleError(f"Malformed RRULE {value!r}") from exc

    for key in recur:
        if key.upper() not in _SUPPORTED_PARTS:
            raise UnsupportedRuleError(f"Unsupported RRULE part {key.upper()}")

    freq = str(_single(recur, "FREQ") or "").upper()
    if freq not in _FREQ_TO_UNIT:
        raise UnsupportedRuleError(f"Unsupported RRULE frequency {freq or '(none)'}")
    unit = _FREQ_TO_UNIT[freq]

    interval = _positive_int(recur, "INTERVAL") or 1
    rule = RecurrenceRule(unit=unit, interval=interval)

    dtstart = ensure_utc(dtstart)
    candidates: list[date] = []
    until = _single(recur, "UNTIL")
    if until is not None:
        candidates.append(_until_to_date(until, dtstart))
    count = _positive_int(recur, "COUNT")
    if count is not None:
        try:
            candidates.append(nth_occurrence_start(dtstart, rule, count).date())
        except (OverflowError, ValueError) as exc:
            raise UnsupportedRuleError(f"COUNT={count} runs past the calendar") from exc
    if candidates:
        rule.until = min(candidates)
    return rule


def _single(recur: vRecur, name: str):
    values = recur.get(name)
    if not isinstance(values, list):
        return values
    if len(values) != 1:
        raise UnsupportedRuleError(f"RRULE {name} must hold a single value")
    return values[0]


def _positive_int(recur: vRecur, name: str) -> int | None:
    value = _single(recur, name)
    if value is None:
        return None
    if int(value) < 1:
        raise UnsupportedRuleError(f"Invalid RRULE {name} {value!r}")
    return int(value)


def _until_to_date(until, dtstart: datetime) -> date:
    if isinstance(until, datetime):
        until = ensure_utc(until)
        # Occurrences share the anchor's UTC time of day, so an UNTIL earlier
        # in the day than that time excludes its own date.
        if until.time() < dtstart.time():
            return until.date() - timedelta(days=1)
        return until.date()
    if isinstance(until, date):
        return until
    raise UnsupportedRuleError(f"Invalid RRULE UNTIL {until!r}")
