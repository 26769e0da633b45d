"""
Timezone handling for davbridge.

Date-times inside a VEVENT may reference a TZID that is only defined by a
VTIMEZONE embedded in the same object. A TimezoneRegistry is filled from
those definitions before any date is read, and is passed explicitly to the
code that reads dates. All instants handed to callers are UTC-aware.
"""

import logging
from datetime import date, datetime, time, tzinfo
from typing import Optional, Union

import pytz

from .models import DateLike


logger = logging.getLogger(__name__)


def lookup_timezone(name: str) -> Optional[tzinfo]:
    """Look up an IANA timezone name, None if unknown."""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        return None


def localize(dt: datetime, tz: tzinfo) -> datetime:
    """Attach tz to a naive datetime (pytz zones need localize())."""
    if hasattr(tz, 'localize'):
        return tz.localize(dt)
    return dt.replace(tzinfo=tz)


def to_utc_datetime(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Naive datetimes are taken to be UTC already (floating times have no
    better interpretation server-side).
    """
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_datetime_input(value: DateLike) -> datetime:
    """
    Turn an ISO 8601 string or datetime into a UTC-aware datetime.

    Raises:
        ValueError: if the string is not ISO 8601.
    """
    if isinstance(value, datetime):
        return to_utc_datetime(value)
    if isinstance(value, date):
        return pytz.UTC.localize(datetime.combine(value, time.min))
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return to_utc_datetime(datetime.fromisoformat(text))


class TimezoneRegistry:
    """
    TZID -> tzinfo lookup for one parsed iCalendar object.

    Embedded VTIMEZONE definitions win over the IANA database so that
    custom or vendor-specific TZIDs resolve to the offsets the object
    itself declares.
    """

    def __init__(self):
        self._zones: dict[str, tzinfo] = {}

    def __contains__(self, tzid: str) -> bool:
        return tzid in self._zones

    def __len__(self) -> int:
        return len(self._zones)

    def register_calendar(self, calendar) -> int:
        """
        Register every VTIMEZONE found in a parsed icalendar.Calendar.

        Returns:
            Number of timezones registered.
        """
        registered = 0
        for vtimezone in calendar.walk('VTIMEZONE'):
            tzid = str(vtimezone.get('TZID', ''))
            if not tzid:
                continue
            try:
                self._zones[tzid] = vtimezone.to_tz()
                registered += 1
            except Exception as e:
                # A broken definition must not block the event itself
                logger.warning(
                    "Failed to register timezone",
                    extra={"tzid": tzid, "error": str(e)},
                )
        if registered:
            logger.debug("Registered VTIMEZONE components", extra={"count": registered})
        return registered

    def get(self, tzid: str) -> Optional[tzinfo]:
        if tzid in self._zones:
            return self._zones[tzid]
        return lookup_timezone(tzid)

    def to_utc(self, prop) -> Optional[datetime]:
        """
        Resolve a DTSTART/DTEND/RECURRENCE-ID property to a UTC instant.

        DATE values become midnight UTC. Date-times without tzinfo are
        resolved through their TZID parameter.
        """
        if prop is None:
            return None
        value = prop.dt
        if isinstance(value, datetime):
            if value.tzinfo is None:
                tzid = prop.params.get('TZID')
                tz = self.get(str(tzid)) if tzid else None
                if tzid and tz is None:
                    logger.warning("Unknown TZID, assuming UTC", extra={"tzid": str(tzid)})
                value = localize(value, tz or pytz.UTC)
            return value.astimezone(pytz.UTC)
        if isinstance(value, date):
            return pytz.UTC.localize(datetime.combine(value, time.min))
        return None

    def localize_like(self, instant: datetime, prop) -> Union[date, datetime]:
        """
        Express a UTC instant with the same value type and timezone as prop.

        Used for RECURRENCE-ID and for moved DTSTART/DTEND values, which
        must match the value type of the property they relate to.
        """
        instant = to_utc_datetime(instant)
        reference = prop.dt if prop is not None else None
        if isinstance(reference, date) and not isinstance(reference, datetime):
            return instant.date()
        if isinstance(reference, datetime):
            tzid = prop.params.get('TZID')
            if tzid:
                tz = self.get(str(tzid))
                # Unresolvable TZID: fall back to an explicit UTC value
                return instant.astimezone(tz) if tz is not None else instant
            if reference.tzinfo is None:
                # Floating reference stays floating
                return instant.replace(tzinfo=None)
            return instant.astimezone(reference.tzinfo)
        return instant


def registry_for(calendar) -> TimezoneRegistry:
    """Build a registry pre-filled with the calendar's own VTIMEZONEs."""
    registry = TimezoneRegistry()
    registry.register_calendar(calendar)
    return registry
