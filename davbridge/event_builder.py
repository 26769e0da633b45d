"""
Typed inputs -> iCalendar text.

build_event() creates a fresh VCALENDAR for new events. Everything else here
follows parse -> targeted mutation -> serialize on the text the server holds,
so properties davbridge does not model (VALARM, X- properties, ATTENDEE
parameters, attachments, VTIMEZONE) survive an update untouched.
"""

import copy
import logging
import re
import uuid
from datetime import date, datetime, timedelta
from typing import Optional, Union

import pytz
from icalendar import Alarm, Calendar as ICalCalendar, Event as ICalEvent
from icalendar.prop import vDDDTypes, vDuration, vInt, vRecur, vText

from .events import event_times, find_master, vevents
from .models import CreateEventInput, DateLike, UpdateEventInput
from .timezones import TimezoneRegistry, parse_datetime_input, registry_for


logger = logging.getLogger(__name__)

PRODID = "-//davbridge//EN"

# Properties that only make sense on the recurrence master
_MASTER_ONLY = ('RRULE', 'RDATE', 'EXDATE', 'EXRULE')
_NOT_COPIED = _MASTER_ONLY + ('DTSTART', 'DTEND', 'DURATION', 'RECURRENCE-ID', 'DTSTAMP')


# ==================== Property Helpers ====================

def dated_property(value: Union[date, datetime], tzid: Optional[str] = None) -> vDDDTypes:
    """
    Build a DTSTART-like property with explicit VALUE/TZID parameters.

    Args:
        value: date for a DATE value, datetime for DATE-TIME
        tzid: TZID to bind a zone-local datetime to, None for UTC/floating
    """
    prop = vDDDTypes(value)
    if isinstance(value, datetime):
        prop.params.pop('VALUE', None)
        if tzid and value.tzinfo is not None:
            prop.params['TZID'] = tzid
        else:
            prop.params.pop('TZID', None)
    else:
        prop.params.pop('TZID', None)
        prop.params['VALUE'] = 'DATE'
    return prop


def resolvable_tzid(registry: TimezoneRegistry, prop) -> Optional[str]:
    if prop is None:
        return None
    tzid = prop.params.get('TZID')
    if tzid and registry.get(str(tzid)) is not None:
        return str(tzid)
    return None


def retyped(registry: TimezoneRegistry, instant: datetime, reference) -> vDDDTypes:
    """Encode instant with the value type and TZID of an existing property."""
    return dated_property(
        registry.localize_like(instant, reference),
        resolvable_tzid(registry, reference),
    )


def _now() -> datetime:
    return datetime.now(pytz.UTC)


def _serialize(calendar: ICalCalendar) -> str:
    return calendar.to_ical().decode('utf-8')


def _parse(raw: str) -> ICalCalendar:
    calendar = ICalCalendar.from_ical(raw)
    if not vevents(calendar):
        raise ValueError("No VEVENT component found in iCalendar data")
    return calendar


def _touch(event: ICalEvent):
    """Refresh DTSTAMP and LAST-MODIFIED and bump SEQUENCE."""
    now = _now()
    event['DTSTAMP'] = vDDDTypes(now)
    event['LAST-MODIFIED'] = vDDDTypes(now)
    sequence = event.get('SEQUENCE')
    event['SEQUENCE'] = vInt(int(sequence) + 1 if sequence is not None else 1)


# ==================== Create ====================

def build_event(input: CreateEventInput) -> str:
    """
    Build a complete VCALENDAR for a new event.

    Timed events are written as UTC DATE-TIME values, all-day events as
    DATE values with an exclusive end date.
    """
    calendar = ICalCalendar()
    calendar.add('prodid', PRODID)
    calendar.add('version', '2.0')
    if input.timezone:
        calendar.add('x-wr-timezone', input.timezone)

    start = parse_datetime_input(input.start)
    end = parse_datetime_input(input.end)

    event = ICalEvent()
    event.add('uid', str(uuid.uuid4()))
    event['DTSTAMP'] = vDDDTypes(_now())
    event.add('summary', input.title)

    if input.all_day:
        start_day = start.date()
        end_day = end.date()
        if end_day <= start_day:
            end_day = start_day + timedelta(days=1)
        event['DTSTART'] = dated_property(start_day)
        event['DTEND'] = dated_property(end_day)
    else:
        event['DTSTART'] = dated_property(start)
        event['DTEND'] = dated_property(end)

    if input.description is not None:
        event.add('description', input.description)
    if input.location is not None:
        event.add('location', input.location)
    if input.recurrence:
        event['RRULE'] = vRecur.from_ical(input.recurrence)

    calendar.add_component(event)
    return _serialize(calendar)


# ==================== Update ====================

def _apply_text_changes(event: ICalEvent, changes: UpdateEventInput):
    if changes.title is not None:
        event['SUMMARY'] = vText(changes.title)
    if changes.description is not None:
        event['DESCRIPTION'] = vText(changes.description)
    if changes.location is not None:
        event['LOCATION'] = vText(changes.location)


def patch_event(raw: str, changes: UpdateEventInput) -> str:
    """
    Apply changes to the master VEVENT of raw and re-serialize.

    Only properties named by a non-None field are touched. An empty
    `recurrence` string removes the RRULE.

    Raises:
        ValueError: if raw holds no VEVENT.
    """
    calendar = _parse(raw)
    registry = registry_for(calendar)
    event = find_master(calendar)

    _apply_text_changes(event, changes)

    if changes.start is not None:
        event['DTSTART'] = retyped(
            registry, parse_datetime_input(changes.start), event.get('DTSTART'),
        )

    if changes.end is not None:
        end = parse_datetime_input(changes.end)
        if 'DTEND' in event:
            event['DTEND'] = retyped(registry, end, event['DTEND'])
        elif 'DURATION' in event:
            start = registry.to_utc(event.get('DTSTART'))
            event['DURATION'] = vDuration(end - start)
        else:
            event['DTEND'] = retyped(registry, end, event.get('DTSTART'))

    if changes.recurrence is not None:
        if changes.recurrence:
            event['RRULE'] = vRecur.from_ical(changes.recurrence)
        else:
            event.pop('RRULE', None)

    _touch(event)
    return _serialize(calendar)


# ==================== Recurrence Exceptions ====================

def build_recurrence_exception(
    raw: str,
    occurrence: DateLike,
    changes: Optional[UpdateEventInput] = None,
    include_alarms: bool = False,
) -> str:
    """
    Add an override VEVENT for one occurrence of a recurring event.

    The override shares the master's UID and carries a RECURRENCE-ID in
    exactly the value type and TZID of the master's DTSTART. It never
    recurs itself. An existing override for the same occurrence is
    replaced.

    Args:
        raw: VCALENDAR text holding the recurrence master
        occurrence: Original start of the occurrence to override
        changes: Changes for this occurrence only
        include_alarms: Copy the master's VALARMs onto the override

    Returns:
        The VCALENDAR text with master and override
    """
    changes = changes or UpdateEventInput()
    calendar = _parse(raw)
    registry = registry_for(calendar)
    master = find_master(calendar)
    if 'RECURRENCE-ID' in master:
        raise ValueError("No recurrence master in iCalendar data")

    master_start, master_end = event_times(registry, master)
    if master_start is None:
        raise ValueError("Recurrence master has no DTSTART")
    instant = parse_datetime_input(occurrence)

    # Drop an earlier override of the same occurrence
    for existing in vevents(calendar):
        if existing is master:
            continue
        if registry.to_utc(existing.get('RECURRENCE-ID')) == instant:
            calendar.subcomponents.remove(existing)
            logger.debug("Replacing existing override", extra={"occurrence": instant.isoformat()})

    exception = ICalEvent()
    for name, value in master.items():
        if name.upper() in _NOT_COPIED:
            continue
        exception[name] = copy.deepcopy(value)

    dtstart = master['DTSTART']
    exception['RECURRENCE-ID'] = retyped(registry, instant, dtstart)

    start = parse_datetime_input(changes.start) if changes.start is not None else instant
    if changes.end is not None:
        end = parse_datetime_input(changes.end)
    else:
        end = start + (master_end - master_start)
    exception['DTSTART'] = retyped(registry, start, dtstart)
    exception['DTEND'] = retyped(registry, end, master.get('DTEND') or dtstart)

    _apply_text_changes(exception, changes)
    if changes.recurrence:
        logger.debug("Ignoring RRULE on recurrence exception")
    exception['DTSTAMP'] = vDDDTypes(_now())

    if include_alarms:
        for alarm in master.subcomponents:
            if alarm.name == 'VALARM':
                exception.add_component(copy.deepcopy(alarm))

    calendar.add_component(exception)
    return _serialize(calendar)


# ==================== Alarms ====================

_ISO_DURATION = re.compile(r'^[+-]?P(\d+W|(?=\d|T\d)(\d+D)?(T(?=\d)(\d+H)?(\d+M)?(\d+S)?)?)$')
_NATURAL_DURATION = re.compile(r'^(\d+)\s*([a-z]+)$')

_UNITS = {
    's': 'S', 'sec': 'S', 'secs': 'S', 'second': 'S', 'seconds': 'S',
    'm': 'M', 'min': 'M', 'mins': 'M', 'minute': 'M', 'minutes': 'M',
    'h': 'H', 'hr': 'H', 'hrs': 'H', 'hour': 'H', 'hours': 'H',
    'd': 'D', 'day': 'D', 'days': 'D',
    'w': 'W', 'wk': 'W', 'wks': 'W', 'week': 'W', 'weeks': 'W',
}


def parse_trigger_duration(text: str) -> str:
    """
    Turn a reminder offset into an iCalendar duration.

    "15m", "15 minutes" -> "-PT15M", "1d" -> "-P1D", "2w" -> "-P2W".
    Values already in iCalendar form ("-PT15M", "PT30M") pass through.

    Raises:
        ValueError: if text is empty or not understood.
    """
    value = (text or '').strip()
    if not value:
        raise ValueError("Empty trigger duration")

    if _ISO_DURATION.match(value.upper()):
        return value.upper()

    match = _NATURAL_DURATION.match(value.lower())
    if match is None or match.group(2) not in _UNITS:
        raise ValueError(f"Invalid trigger duration: {text!r}")

    amount, unit = match.group(1), _UNITS[match.group(2)]
    if unit in ('D', 'W'):
        return f"-P{amount}{unit}"
    return f"-PT{amount}{unit}"


def add_alarm(raw: str, trigger: str, action: str = "DISPLAY", description: str = "Reminder") -> str:
    """Append a VALARM to the master VEVENT."""
    duration = parse_trigger_duration(trigger)
    calendar = _parse(raw)
    event = find_master(calendar)

    alarm = Alarm()
    alarm.add('action', action)
    alarm['TRIGGER'] = vDuration(vDuration.from_ical(duration))
    alarm.add('description', description)
    event.add_component(alarm)
    return _serialize(calendar)


def _alarms(event: ICalEvent) -> list:
    return [c for c in event.subcomponents if c.name == 'VALARM']


def remove_alarm(raw: str, index: int) -> str:
    """
    Remove the index-th VALARM (0-based) of the master VEVENT.

    Raises:
        IndexError: if index is out of range.
    """
    calendar = _parse(raw)
    event = find_master(calendar)
    alarms = _alarms(event)
    if index < 0 or index >= len(alarms):
        raise IndexError(f"Alarm index {index} out of range (event has {len(alarms)} alarms)")
    event.subcomponents.remove(alarms[index])
    return _serialize(calendar)


def remove_all_alarms(raw: str) -> str:
    calendar = _parse(raw)
    event = find_master(calendar)
    for alarm in _alarms(event):
        event.subcomponents.remove(alarm)
    return _serialize(calendar)
