"""Tests for recurrence expansion.

Covers:
- Occurrence budget and window filtering in expand_recurrence
- EXDATE / RDATE handling
- Wall-clock stability across DST transitions
- All-day series
- expand_instances with moved and cancelled overrides
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytz
from icalendar import Event

from davbridge.events import parse_event
from davbridge.models import RemoteObject
from davbridge.recurrence import RecurrenceWindow, expand_instances, expand_recurrence
from tests.conftest import BERLIN_ICS, SINGLE_ICS, WEEKLY_ICS

URL = "https://dav.example.com/calendars/user/work/series.ics"
FAR = datetime(2035, 1, 1, tzinfo=pytz.UTC)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


def _record(text: str):
    return parse_event(RemoteObject(url=URL, data=text))


def _series(body: str) -> str:
    return (
        "BEGIN:VCALENDAR\nVERSION:2.0\nPRODID:-//Test//EN\n"
        f"BEGIN:VEVENT\nUID:series@example.com\nSUMMARY:Series\n{body}\nEND:VEVENT\n"
        "END:VCALENDAR\n"
    )


# ---------------------------------------------------------------------------
# expand_recurrence
# ---------------------------------------------------------------------------


class TestExpandRecurrenceBounds:
    def test_budget_caps_unbounded_rule(self):
        record = _record(_series("DTSTART:20260101T100000Z\nDTEND:20260101T110000Z\nRRULE:FREQ=DAILY"))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=FAR))
        assert len(occurrences) == 100
        assert occurrences[0] == utc(2026, 1, 1, 10, 0)
        assert occurrences[-1] == utc(2026, 4, 10, 10, 0)

    def test_custom_budget(self):
        record = _record(_series("DTSTART:20260101T100000Z\nRRULE:FREQ=DAILY"))
        assert len(expand_recurrence(record, RecurrenceWindow(end=FAR, max_occurrences=5))) == 5

    def test_skipped_occurrences_do_not_use_budget(self):
        record = _record(_series("DTSTART:20260101T100000Z\nRRULE:FREQ=DAILY;COUNT=210"))
        window = RecurrenceWindow(start=utc(2026, 1, 1, 10, 0) + timedelta(days=200), end=FAR)
        occurrences = expand_recurrence(record, window)
        assert len(occurrences) == 10
        assert occurrences[0] == utc(2026, 7, 20, 10, 0)

    def test_window_end_stops_iteration(self):
        record = _record(_series("DTSTART:20260101T100000Z\nRRULE:FREQ=DAILY"))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=utc(2026, 1, 5, 10, 0)))
        assert occurrences == [utc(2026, 1, d, 10, 0) for d in range(1, 6)]

    def test_count_is_respected(self):
        occurrences = expand_recurrence(_record(WEEKLY_ICS), RecurrenceWindow(end=FAR))
        assert len(occurrences) == 10
        assert occurrences[1] - occurrences[0] == timedelta(weeks=1)

    def test_single_event_yields_its_start(self):
        assert expand_recurrence(_record(SINGLE_ICS), RecurrenceWindow(end=FAR)) == [utc(2026, 5, 4, 10, 0)]

    def test_no_dtstart(self):
        assert expand_recurrence(Event(), RecurrenceWindow(end=FAR)) == []

    def test_accepts_icalendar_component(self):
        event = Event.from_ical(
            "BEGIN:VEVENT\nUID:c@example.com\nDTSTART:20260101T100000Z\n"
            "RRULE:FREQ=DAILY;COUNT=3\nEND:VEVENT\n"
        )
        assert len(expand_recurrence(event, RecurrenceWindow(end=FAR))) == 3


class TestExpandRecurrenceExceptions:
    def test_exdate_removes_occurrence(self):
        record = _record(_series(
            "DTSTART:20260105T100000Z\nRRULE:FREQ=DAILY;COUNT=5\nEXDATE:20260107T100000Z"
        ))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=FAR))
        assert utc(2026, 1, 7, 10, 0) not in occurrences
        assert len(occurrences) == 4

    def test_rdate_adds_occurrence(self):
        record = _record(_series(
            "DTSTART:20260105T100000Z\nRRULE:FREQ=DAILY;COUNT=2\nRDATE:20260201T150000Z"
        ))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=FAR))
        assert occurrences == [utc(2026, 1, 5, 10, 0), utc(2026, 1, 6, 10, 0), utc(2026, 2, 1, 15, 0)]

    def test_until(self):
        record = _record(_series("DTSTART:20260105T100000Z\nRRULE:FREQ=DAILY;UNTIL=20260108T100000Z"))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=FAR))
        assert occurrences[-1] == utc(2026, 1, 8, 10, 0)
        assert len(occurrences) == 4


class TestExpandRecurrenceTimezones:
    def test_wall_clock_kept_across_dst(self):
        occurrences = expand_recurrence(_record(BERLIN_ICS), RecurrenceWindow(end=FAR))
        # 09:00 Berlin: CET before 29 March, CEST after
        assert occurrences == [
            utc(2026, 3, 16, 8, 0),
            utc(2026, 3, 23, 8, 0),
            utc(2026, 3, 30, 7, 0),
            utc(2026, 4, 6, 7, 0),
        ]

    def test_until_with_zoned_start(self):
        text = BERLIN_ICS.replace("RRULE:FREQ=WEEKLY;COUNT=4", "RRULE:FREQ=WEEKLY;UNTIL=20260331T000000Z")
        occurrences = expand_recurrence(_record(text), RecurrenceWindow(end=FAR))
        assert len(occurrences) == 3

    def test_all_day_series(self):
        record = _record(_series("DTSTART;VALUE=DATE:20260401\nRRULE:FREQ=DAILY;COUNT=3"))
        occurrences = expand_recurrence(record, RecurrenceWindow(end=FAR))
        assert occurrences == [utc(2026, 4, 1), utc(2026, 4, 2), utc(2026, 4, 3)]


# ---------------------------------------------------------------------------
# expand_instances
# ---------------------------------------------------------------------------

SERIES_WITH_OVERRIDES = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//EN
BEGIN:VEVENT
UID:standup@example.com
DTSTAMP:20260101T000000Z
DTSTART:20260202T090000Z
DTEND:20260202T093000Z
SUMMARY:Standup
RRULE:FREQ=WEEKLY;COUNT=4
END:VEVENT
BEGIN:VEVENT
UID:standup@example.com
DTSTAMP:20260101T000000Z
RECURRENCE-ID:20260209T090000Z
DTSTART:20260209T090000Z
DTEND:20260209T093000Z
SUMMARY:Standup
STATUS:CANCELLED
END:VEVENT
BEGIN:VEVENT
UID:standup@example.com
DTSTAMP:20260101T000000Z
RECURRENCE-ID:20260216T090000Z
DTSTART:20260216T140000Z
DTEND:20260216T143000Z
SUMMARY:Moved standup
LOCATION:Cafeteria
END:VEVENT
END:VCALENDAR
"""


class TestExpandInstances:
    def test_overrides_are_applied(self):
        instances = expand_instances(
            [_record(SERIES_WITH_OVERRIDES)], utc(2026, 2, 1), utc(2026, 3, 1),
        )
        assert [i.start for i in instances] == [
            utc(2026, 2, 2, 9, 0),
            utc(2026, 2, 16, 14, 0),
            utc(2026, 2, 23, 9, 0),
        ]

    def test_moved_instance_carries_override_fields(self):
        instances = expand_instances(
            [_record(SERIES_WITH_OVERRIDES)], utc(2026, 2, 1), utc(2026, 3, 1),
        )
        moved = instances[1]
        assert moved.summary == "Moved standup"
        assert moved.location == "Cafeteria"
        assert moved.end == utc(2026, 2, 16, 14, 30)
        assert moved.uid == "standup@example.com"

    def test_range_limits_instances(self):
        instances = expand_instances(
            [_record(SERIES_WITH_OVERRIDES)], utc(2026, 2, 20), utc(2026, 3, 1),
        )
        assert [i.start for i in instances] == [utc(2026, 2, 23, 9, 0)]

    def test_multiple_records_sorted(self):
        instances = expand_instances(
            [_record(SINGLE_ICS), _record(WEEKLY_ICS)], utc(2026, 4, 1), utc(2026, 6, 1),
        )
        starts = [i.start for i in instances]
        assert starts == sorted(starts)
        assert utc(2026, 5, 4, 10, 0) in starts
        assert [i.summary for i in instances].count("Standup") == 1
