"""
Recurrence expansion.

expand_recurrence() lists the occurrence starts of a single master, bounded
by an occurrence budget and a window. expand_instances() turns stored
objects into concrete per-occurrence records over a range, with overrides
and cancellations applied by recurring_ical_events.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Iterable, Iterator, Optional, Union

import pytz
import recurring_ical_events
from dateutil import tz as dateutil_tz
from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar as ICalCalendar, Event as ICalEvent
from icalendar.prop import vRecur

from .events import as_list, event_times, find_master
from .models import EventRecord
from .timezones import TimezoneRegistry, localize, registry_for, to_utc_datetime


logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 100
DEFAULT_WINDOW_DAYS = 365


@dataclass
class RecurrenceWindow:
    """
    Bounds for expand_recurrence().

    Occurrences before `start` are skipped without counting against
    `max_occurrences`. `end` defaults to one year from now.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES


# ==================== Rule Set Construction ====================

def _wall_clock_tz(tz: Optional[tzinfo]) -> Optional[tzinfo]:
    """pytz zones carry a fixed offset per instance; dateutil needs a real zone."""
    zone = getattr(tz, 'zone', None)
    if zone and hasattr(tz, 'localize'):
        return dateutil_tz.gettz(zone) or tz
    return tz


def _resolve_dtstart(registry: TimezoneRegistry, prop) -> datetime:
    """DTSTART as the wall-clock datetime the rule is anchored to."""
    value = prop.dt
    if not isinstance(value, datetime):
        # All-day rules are expanded naive and pinned to UTC afterwards
        return datetime.combine(value, time.min)
    if value.tzinfo is None:
        tzid = prop.params.get('TZID')
        zone = registry.get(str(tzid)) if tzid else None
        if zone is None:
            return pytz.UTC.localize(value)
        value = localize(value, zone)
    wall_tz = _wall_clock_tz(value.tzinfo)
    if wall_tz is not value.tzinfo:
        value = value.replace(tzinfo=None).replace(tzinfo=wall_tz)
    return value


def _align(value, dtstart: datetime) -> datetime:
    """Bring an RDATE/EXDATE value into the same shape as dtstart."""
    if isinstance(value, tuple):
        value = value[0]  # PERIOD
    if not isinstance(value, datetime):
        value = datetime.combine(value, dtstart.time())
    if dtstart.tzinfo is None:
        if value.tzinfo is not None:
            value = value.astimezone(pytz.UTC).replace(tzinfo=None)
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=dtstart.tzinfo)
    return value.astimezone(dtstart.tzinfo)


def _rule_text(rule: vRecur, dtstart: datetime) -> str:
    """
    Serialize an RRULE for dateutil.

    dateutil requires UNTIL in UTC when DTSTART is aware, so DATE and
    floating UNTIL values are converted in the zone of DTSTART.
    """
    rule = vRecur(dict(rule))
    until = rule.get('UNTIL')
    if until and dtstart.tzinfo is not None:
        value = until[0]
        if not isinstance(value, datetime):
            value = datetime.combine(value, time(23, 59, 59))
        if value.tzinfo is None:
            value = value.replace(tzinfo=dtstart.tzinfo)
        rule['UNTIL'] = [value.astimezone(pytz.UTC)]
    elif until and dtstart.tzinfo is None:
        value = until[0]
        if isinstance(value, datetime) and value.tzinfo is not None:
            rule['UNTIL'] = [value.astimezone(pytz.UTC).replace(tzinfo=None)]
    return rule.to_ical().decode('utf-8')


def _date_values(event: ICalEvent, name: str) -> list:
    values = []
    for prop in as_list(event.get(name)):
        values.extend(d.dt for d in getattr(prop, 'dts', []))
    return values


def build_ruleset(event: ICalEvent, dtstart: datetime) -> rruleset:
    rules = rruleset()
    rules.rdate(dtstart)
    for rule in as_list(event.get('RRULE')):
        rules.rrule(rrulestr(_rule_text(rule, dtstart), dtstart=dtstart))
    for value in _date_values(event, 'RDATE'):
        rules.rdate(_align(value, dtstart))
    for value in _date_values(event, 'EXDATE'):
        rules.exdate(_align(value, dtstart))
    return rules


# ==================== Expansion ====================

def _master_component(master: Union[EventRecord, ICalEvent]):
    if isinstance(master, EventRecord):
        calendar = ICalCalendar.from_ical(master._raw)
        return find_master(calendar), registry_for(calendar)
    return master, TimezoneRegistry()


def expand_recurrence(
    master: Union[EventRecord, ICalEvent],
    window: Optional[RecurrenceWindow] = None,
) -> list[datetime]:
    """
    List occurrence starts of a recurrence master as UTC datetimes.

    Iteration always begins at DTSTART. Occurrences before window.start are
    skipped but do not count toward the budget; iteration stops at the
    first occurrence after window.end or once the budget is used up.

    Args:
        master: Parsed record or icalendar VEVENT
        window: Bounds of the expansion, defaults to the next year

    Returns:
        Occurrence starts in chronological order, [] without DTSTART
    """
    window = window or RecurrenceWindow()
    event, registry = _master_component(master)
    if event is None or event.get('DTSTART') is None:
        return []

    end = window.end or (datetime.now(pytz.UTC) + timedelta(days=DEFAULT_WINDOW_DAYS))
    end = to_utc_datetime(end)
    start = to_utc_datetime(window.start) if window.start else None

    dtstart = _resolve_dtstart(registry, event['DTSTART'])
    occurrences = []
    if window.max_occurrences <= 0:
        return occurrences

    for occurrence in build_ruleset(event, dtstart):
        instant = to_utc_datetime(occurrence)
        if instant > end:
            break
        if start is not None and instant < start:
            continue
        occurrences.append(instant)
        if len(occurrences) >= window.max_occurrences:
            break
    return occurrences


def iter_instances(
    records: Iterable[EventRecord], start: datetime, end: datetime
) -> Iterator[tuple[EventRecord, ICalEvent]]:
    """
    Yield (instance record, instance component) for every occurrence that
    overlaps [start, end).

    RECURRENCE-ID overrides replace the generated occurrence and EXDATE
    removes it. Cancelled instances are dropped.
    """
    start = to_utc_datetime(start)
    end = to_utc_datetime(end)
    for record in records:
        try:
            calendar = ICalCalendar.from_ical(record._raw)
            registry = registry_for(calendar)
            components = recurring_ical_events.of(calendar).between(start, end)
        except Exception as e:
            logger.warning(
                "Failed to expand event",
                extra={"uid": record.uid, "url": record.url, "error": str(e)},
            )
            continue

        for component in components:
            status = str(component.get('STATUS', '')).upper()
            if status == 'CANCELLED':
                continue
            instance_start, instance_end = event_times(registry, component)
            if instance_start is None:
                continue
            summary = component.get('SUMMARY')
            yield dataclasses.replace(
                record,
                start=instance_start,
                end=instance_end,
                summary=str(summary) if summary else record.summary,
                status=status or None,
                description=str(component['DESCRIPTION']) if 'DESCRIPTION' in component else record.description,
                location=str(component['LOCATION']) if 'LOCATION' in component else record.location,
            ), component


def expand_instances(records: Iterable[EventRecord], start: datetime, end: datetime) -> list[EventRecord]:
    """One record per occurrence in [start, end), sorted by start."""
    instances = [record for record, _ in iter_instances(records, start, end)]
    instances.sort(key=lambda r: r.start)
    return instances
