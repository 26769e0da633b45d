"""
iCalendar -> EventRecord transformation.

Parsing never raises: a malformed or unexpected object is logged with its
URL and skipped, so one bad resource cannot hide the rest of a calendar.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from icalendar import Calendar as ICalCalendar, Event as ICalEvent

from .models import AttendeeInfo, EventRecord, InvitationRecord, OrganizerInfo, RemoteObject
from .timezones import TimezoneRegistry


logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "(No title)"


# ==================== Component Helpers ====================

def as_list(value) -> list:
    """icalendar returns a bare value for one occurrence and a list for several."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def vevents(calendar: ICalCalendar) -> list[ICalEvent]:
    return [c for c in calendar.subcomponents if c.name == 'VEVENT']


def find_master(calendar: ICalCalendar) -> Optional[ICalEvent]:
    """
    Return the recurrence master of a calendar object.

    A resource may carry a master plus RECURRENCE-ID overrides. The master
    is the VEVENT without RECURRENCE-ID; an orphan override is used when no
    master is present.
    """
    events = vevents(calendar)
    for event in events:
        if 'RECURRENCE-ID' not in event:
            return event
    return events[0] if events else None


def is_all_day(event: ICalEvent) -> bool:
    dtstart = event.get('DTSTART')
    if dtstart is None:
        return False
    return not isinstance(dtstart.dt, datetime)


def event_times(
    registry: TimezoneRegistry, event: ICalEvent
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    UTC start and end of a VEVENT.

    Missing DTEND falls back to DURATION, then to one day for all-day
    events, then to the start itself. (None, None) without DTSTART.
    """
    start = registry.to_utc(event.get('DTSTART'))
    if start is None:
        return None, None
    end = registry.to_utc(event.get('DTEND'))
    if end is None:
        duration = event.get('DURATION')
        if duration is not None and isinstance(duration.dt, timedelta):
            end = start + duration.dt
        elif is_all_day(event):
            end = start + timedelta(days=1)
        else:
            end = start
    return start, end


def strip_mailto(address: str) -> str:
    if address.lower().startswith('mailto:'):
        return address[len('mailto:'):]
    return address


def parse_attendee(attendee) -> AttendeeInfo:
    params = getattr(attendee, 'params', {})
    email = strip_mailto(str(attendee))
    name = str(params.get('CN', '')) or email
    rsvp = params.get('RSVP')
    return AttendeeInfo(
        name=name,
        email=email,
        partstat=str(params.get('PARTSTAT', 'NEEDS-ACTION')).upper(),
        role=str(params.get('ROLE', 'REQ-PARTICIPANT')).upper(),
        rsvp=None if rsvp is None else str(rsvp).upper() == 'TRUE',
    )


def rrule_text(event: ICalEvent) -> Optional[str]:
    rules = as_list(event.get('RRULE'))
    if not rules:
        return None
    return rules[0].to_ical().decode('utf-8')


def _text(event: ICalEvent, name: str) -> Optional[str]:
    value = event.get(name)
    if value is None:
        return None
    return str(value)


# ==================== Parsing ====================

def parse_event(obj: RemoteObject, registry: Optional[TimezoneRegistry] = None) -> Optional[EventRecord]:
    """
    Parse one calendar object into an EventRecord.

    Args:
        obj: Raw object as returned by the server
        registry: Optional registry to fill; a fresh one is used otherwise

    Returns:
        EventRecord, or None if the object is not a usable VEVENT
    """
    if not obj.data or not obj.data.strip():
        logger.warning("Skipping empty calendar object", extra={"url": obj.url})
        return None

    try:
        calendar = ICalCalendar.from_ical(obj.data)
        if calendar.name != 'VCALENDAR':
            logger.warning(
                "Skipping non-VCALENDAR object",
                extra={"url": obj.url, "component": calendar.name},
            )
            return None

        # VTIMEZONEs must be known before any date value is read
        registry = registry if registry is not None else TimezoneRegistry()
        registry.register_calendar(calendar)

        master = find_master(calendar)
        if master is None:
            logger.warning("No VEVENT in calendar object", extra={"url": obj.url})
            return None

        uid = _text(master, 'UID')
        if not uid:
            logger.warning("Skipping VEVENT without UID", extra={"url": obj.url})
            return None

        start, end = event_times(registry, master)
        if start is None:
            logger.warning("Skipping VEVENT without DTSTART", extra={"url": obj.url, "uid": uid})
            return None

        timezone = None
        tz_components = [c for c in calendar.subcomponents if c.name == 'VTIMEZONE']
        if tz_components:
            timezone = _text(tz_components[0], 'TZID')
        if not timezone:
            tzid = master['DTSTART'].params.get('TZID')
            timezone = str(tzid) if tzid else None

        details = [parse_attendee(a) for a in as_list(master.get('ATTENDEE'))]
        status = _text(master, 'STATUS')
        recurrence_rule = rrule_text(master)

        return EventRecord(
            uid=uid,
            summary=_text(master, 'SUMMARY') or DEFAULT_SUMMARY,
            start=start,
            end=end,
            url=obj.url,
            description=_text(master, 'DESCRIPTION'),
            location=_text(master, 'LOCATION'),
            attendees=[d.name for d in details],
            attendee_details=details,
            timezone=timezone,
            status=status.upper() if status else None,
            is_recurring=recurrence_rule is not None or 'RDATE' in master,
            recurrence_rule=recurrence_rule,
            all_day=is_all_day(master),
            alarm_count=len([c for c in master.subcomponents if c.name == 'VALARM']),
            etag=obj.etag,
            _raw=obj.data,
        )
    except Exception as e:
        logger.warning(
            "Failed to parse calendar object",
            extra={"url": obj.url, "error": str(e)},
        )
        return None


def parse_events(objects: Iterable[RemoteObject]) -> list[EventRecord]:
    """Parse many objects, dropping the ones that fail."""
    records = []
    for obj in objects:
        record = parse_event(obj)
        if record is not None:
            records.append(record)
    return records


# ==================== Invitations ====================

def parse_organizer(event: ICalEvent) -> OrganizerInfo:
    organizer = event.get('ORGANIZER')
    if organizer is None:
        return OrganizerInfo()
    params = getattr(organizer, 'params', {})
    return OrganizerInfo(
        name=str(params.get('CN', '')) or "Unknown",
        email=strip_mailto(str(organizer)),
    )


def user_partstat(event: ICalEvent, user_email: str) -> str:
    """PARTSTAT of the attendee matching user_email (case-insensitive)."""
    wanted = user_email.strip().lower()
    for attendee in as_list(event.get('ATTENDEE')):
        if strip_mailto(str(attendee)).lower() == wanted:
            params = getattr(attendee, 'params', {})
            return str(params.get('PARTSTAT', '')).upper() or "NEEDS-ACTION"
    return "NEEDS-ACTION"


def parse_invitation(obj: RemoteObject, user_email: str) -> Optional[InvitationRecord]:
    """
    Parse a scheduling inbox item into an InvitationRecord.

    Same policy as parse_event(): timezones are registered first and an
    unusable object is logged and skipped.
    """
    if not obj.data or not obj.data.strip():
        logger.warning("Inbox item has no calendar data", extra={"url": obj.url})
        return None

    try:
        calendar = ICalCalendar.from_ical(obj.data)
        if calendar.name != 'VCALENDAR':
            logger.warning(
                "Skipping non-VCALENDAR inbox item",
                extra={"url": obj.url, "component": calendar.name},
            )
            return None

        registry = TimezoneRegistry()
        registry.register_calendar(calendar)

        event = find_master(calendar)
        if event is None:
            logger.debug("No VEVENT in inbox item", extra={"url": obj.url})
            return None

        uid = _text(event, 'UID')
        if not uid:
            logger.warning("Skipping invitation without UID", extra={"url": obj.url})
            return None

        start, end = event_times(registry, event)
        if start is None:
            logger.warning("Skipping invitation without DTSTART", extra={"url": obj.url, "uid": uid})
            return None

        return InvitationRecord(
            uid=uid,
            summary=_text(event, 'SUMMARY') or DEFAULT_SUMMARY,
            organizer=parse_organizer(event),
            proposed_start=start,
            proposed_end=end,
            url=obj.url,
            user_partstat=user_partstat(event, user_email),
            location=_text(event, 'LOCATION'),
            etag=obj.etag,
            _raw=obj.data,
        )
    except Exception as e:
        logger.error(
            "Failed to parse invitation",
            extra={"url": obj.url, "error": str(e)},
        )
        return None
