"""
Calendar service: events on CalDAV collections.

Reads go through the ctag-validated collection cache. Writes carry an
entity-tag precondition, turn 412 into ConflictError and invalidate the
containing collection on success.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from icalendar import Event as ICalEvent

from .cache import CollectionCache
from .errors import ObjectNotFoundError
from .event_builder import (
    add_alarm,
    build_event,
    build_recurrence_exception,
    parse_trigger_duration,
    patch_event,
    remove_alarm,
    remove_all_alarms,
)
from .events import parse_events
from .models import (
    BUSY,
    TENTATIVE,
    UNAVAILABLE,
    AvailabilityPeriod,
    AvailabilityResult,
    Collection,
    CreateEventInput,
    DateLike,
    EventRecord,
    RemoteObject,
    TimeRange,
    UpdateEventInput,
    WriteResult,
)
from .recurrence import (
    DEFAULT_MAX_OCCURRENCES,
    DEFAULT_WINDOW_DAYS,
    RecurrenceWindow,
    expand_recurrence,
    iter_instances,
)
from .retry import RetryPolicy
from .service import CollectionService
from .timezones import parse_datetime_input, to_utc_datetime


logger = logging.getLogger(__name__)


# ==================== Availability ====================

def busy_type(component: ICalEvent) -> Optional[str]:
    """How an event instance blocks time, None if it does not."""
    if str(component.get('TRANSP', 'OPAQUE')).upper() == 'TRANSPARENT':
        return None
    status = str(component.get('STATUS', '')).upper()
    if status == 'CANCELLED':
        return None
    if status == 'TENTATIVE':
        return TENTATIVE
    if str(component.get('X-MICROSOFT-CDO-BUSYSTATUS', '')).upper() == 'OOF':
        return UNAVAILABLE
    return BUSY


def merge_periods(periods: list[AvailabilityPeriod]) -> list[AvailabilityPeriod]:
    """Merge overlapping or touching periods of the same type."""
    merged: list[AvailabilityPeriod] = []
    for kind in sorted({p.type for p in periods}):
        current = None
        for period in sorted((p for p in periods if p.type == kind), key=lambda p: p.start):
            if current is not None and period.start <= current.end:
                if period.end > current.end:
                    current = AvailabilityPeriod(current.start, period.end, kind)
                continue
            if current is not None:
                merged.append(current)
            current = period
        if current is not None:
            merged.append(current)
    merged.sort(key=lambda p: (p.start, p.end, p.type))
    return merged


class CalendarService(CollectionService):
    """Events across the calendars of one CalDAV account."""

    resource_type = "event"
    content_type = "text/calendar"
    extension = ".ics"
    create_conflict_detail = (
        "An event with this UID already exists. "
        "Use a different UID or update the existing event."
    )

    def __init__(
        self,
        client,
        cache: Optional[CollectionCache[RemoteObject]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_calendar: Optional[str] = None,
        max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ):
        super().__init__(client, cache, retry_policy, default_calendar)
        self.max_occurrences = max_occurrences
        self.window_days = window_days

    def _discover(self) -> list[Collection]:
        return self.client.discover_calendars()

    def _fetch_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        return self.client.fetch_calendar_objects(url, time_range)

    # ==================== Read Path ====================

    async def list_calendars(self) -> list[Collection]:
        """Discovered calendars; discovery runs once, lazily."""
        return await self._list_collections()

    async def refresh_calendars(self) -> list[Collection]:
        """Re-run discovery and drop all cached objects."""
        logger.info("Refreshing calendar list")
        return await self._refresh_collections()

    async def fetch_events(self, collection: Collection, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        return await self._fetch(collection, time_range)

    async def fetch_all_events(
        self,
        calendar_name: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> list[RemoteObject]:
        """
        Raw objects of all calendars, or of the calendar whose display name
        matches calendar_name (case-insensitive). An unknown name yields [].
        """
        objects = await self._fetch_all(calendar_name, time_range)
        logger.info(
            "Fetched events",
            extra={"calendar": calendar_name, "count": len(objects)},
        )
        return objects

    async def list_events(
        self,
        calendar_name: Optional[str] = None,
        time_range: Optional[TimeRange] = None,
    ) -> list[EventRecord]:
        """Parsed events; objects that fail to parse are left out."""
        return parse_events(await self.fetch_all_events(calendar_name, time_range))

    async def find_event_by_uid(self, uid: str, calendar_name: Optional[str] = None) -> Optional[EventRecord]:
        for record in await self.list_events(calendar_name):
            if record.uid == uid:
                logger.debug("Found event by UID", extra={"uid": uid, "url": record.url})
                return record
        logger.debug("Event not found by UID", extra={"uid": uid})
        return None

    def occurrences(
        self,
        record: EventRecord,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[datetime]:
        """Occurrence starts of a record under this service's recurrence limits."""
        if end is None:
            end = datetime.now(pytz.UTC) + timedelta(days=self.window_days)
        window = RecurrenceWindow(start=start, end=to_utc_datetime(end), max_occurrences=self.max_occurrences)
        return expand_recurrence(record, window)

    # ==================== Write Path ====================

    async def create_event(self, input: CreateEventInput) -> WriteResult:
        """
        Create a new event in input.calendar, the default calendar or the
        first calendar.

        Raises:
            ConflictError: if the resource already exists
            CollectionNotFoundError: if the target calendar is unknown
        """
        return await self._create(build_event(input), input.calendar)

    async def update_event(self, url: str, etag: Optional[str], input: UpdateEventInput) -> WriteResult:
        """
        Apply input to the event at url.

        Args:
            url: Event URL
            etag: Entity tag the caller last saw; the write fails with
                ConflictError if the server holds a different version
            input: Changes, None fields are left untouched

        Raises:
            ValueError: if input holds no change
        """
        if input.is_empty():
            raise ValueError("No changes given for event update")
        return await self._update(url, etag, lambda raw: patch_event(raw, input))

    async def delete_event(self, url: str, etag: Optional[str] = None):
        await self._delete(url, etag)

    async def create_recurrence_exception(
        self,
        master: EventRecord,
        occurrence: DateLike,
        changes: Optional[UpdateEventInput] = None,
        include_alarms: bool = False,
    ) -> WriteResult:
        """Override a single occurrence of a recurring event."""
        if not master.is_recurring:
            raise ValueError(f"Event {master.uid} is not recurring")
        return await self._update(
            master.url,
            master.etag,
            lambda raw: build_recurrence_exception(raw, occurrence, changes, include_alarms),
        )

    async def _require_event(self, uid: str, calendar_name: Optional[str]) -> EventRecord:
        record = await self.find_event_by_uid(uid, calendar_name)
        if record is None:
            raise ObjectNotFoundError(f"Event not found with UID: {uid}")
        return record

    async def add_alarm(self, uid: str, trigger: str, calendar_name: Optional[str] = None) -> WriteResult:
        """
        Add a DISPLAY reminder to an event.

        Args:
            uid: Event UID
            trigger: Offset before the start, e.g. "15 minutes" or "-PT15M"
            calendar_name: Restrict the UID lookup to this calendar
        """
        parse_trigger_duration(trigger)
        record = await self._require_event(uid, calendar_name)
        result = await self._update(record.url, record.etag, lambda raw: add_alarm(raw, trigger))
        logger.info("Alarm added", extra={"uid": uid, "url": record.url, "trigger": trigger})
        return result

    async def remove_alarm(
        self,
        uid: str,
        index: Optional[int] = None,
        calendar_name: Optional[str] = None,
    ) -> WriteResult:
        """Remove the index-th reminder of an event, or all reminders if index is None."""
        record = await self._require_event(uid, calendar_name)
        if index is None:
            patch = remove_all_alarms
        elif index < 0 or index >= record.alarm_count:
            raise IndexError(f"Alarm index {index} out of range (event has {record.alarm_count} alarms)")
        else:
            def patch(raw):
                return remove_alarm(raw, index)
        result = await self._update(record.url, record.etag, patch)
        logger.info("Alarm removed", extra={"uid": uid, "url": record.url, "index": index})
        return result

    # ==================== Availability ====================

    async def check_availability(
        self,
        start: DateLike,
        end: DateLike,
        calendar_name: Optional[str] = None,
    ) -> AvailabilityResult:
        """
        Busy periods between start and end.

        Recurring events are expanded with their overrides applied.
        Transparent and cancelled instances are ignored; periods are
        clipped to the query range and merged per type.

        Raises:
            ValueError: if end is not after start.
        """
        query_start = parse_datetime_input(start)
        query_end = parse_datetime_input(end)
        if query_end <= query_start:
            raise ValueError("End of the availability range must be after its start")

        objects = await self.fetch_all_events(calendar_name, TimeRange(query_start, query_end))
        periods = []
        for instance, component in iter_instances(parse_events(objects), query_start, query_end):
            kind = busy_type(component)
            if kind is None:
                continue
            period_start = max(instance.start, query_start)
            period_end = min(instance.end, query_end)
            if period_end <= period_start:
                continue
            periods.append(AvailabilityPeriod(period_start, period_end, kind))

        result = AvailabilityResult(query_start, query_end, merge_periods(periods))
        logger.info(
            "Checked availability",
            extra={"calendar": calendar_name, "periods": len(result.periods)},
        )
        return result
