"""Shared fixtures for the davbridge test suite.

FakeRemoteClient stands in for a CalDAV/CardDAV server: it keeps objects per
collection, hands out a fresh entity tag on every write, bumps the
collection's ctag, and enforces If-Match / If-None-Match the way a real
server does.
"""

from __future__ import annotations

from typing import Optional

import pytest

from davbridge.calendar_service import CalendarService
from davbridge.contact_service import ContactService
from davbridge.models import Collection, RemoteObject, TimeRange, WriteResponse
from davbridge.retry import RetryPolicy

BASE_URL = "https://dav.example.com"
WORK_CALENDAR = f"{BASE_URL}/calendars/user/work/"
HOME_CALENDAR = f"{BASE_URL}/calendars/user/home/"
CONTACTS = f"{BASE_URL}/addressbooks/user/contacts/"


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

WEEKLY_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp//Calendar//EN
BEGIN:VEVENT
UID:weekly-standup@example.com
DTSTAMP:20260101T000000Z
DTSTART:20260202T090000Z
DTEND:20260202T093000Z
SUMMARY:Standup
DESCRIPTION:Daily sync of the platform team
LOCATION:Room 4
STATUS:CONFIRMED
RRULE:FREQ=WEEKLY;COUNT=10
X-CUSTOM-FLAG:keep-me
ATTENDEE;CN=Jane Roe;PARTSTAT=ACCEPTED;ROLE=CHAIR:mailto:jane@example.com
ATTENDEE;RSVP=TRUE:mailto:bob@example.com
BEGIN:VALARM
ACTION:DISPLAY
TRIGGER:-PT10M
DESCRIPTION:Standup soon
END:VALARM
END:VEVENT
END:VCALENDAR
"""

BERLIN_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp//Calendar//EN
BEGIN:VTIMEZONE
TZID:Europe/Berlin
BEGIN:DAYLIGHT
TZOFFSETFROM:+0100
TZOFFSETTO:+0200
TZNAME:CEST
DTSTART:19700329T020000
RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU
END:DAYLIGHT
BEGIN:STANDARD
TZOFFSETFROM:+0200
TZOFFSETTO:+0100
TZNAME:CET
DTSTART:19701025T030000
RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU
END:STANDARD
END:VTIMEZONE
BEGIN:VEVENT
UID:berlin-review@example.com
DTSTAMP:20260101T000000Z
DTSTART;TZID=Europe/Berlin:20260316T090000
DTEND;TZID=Europe/Berlin:20260316T100000
SUMMARY:Review
SEQUENCE:0
RRULE:FREQ=WEEKLY;COUNT=4
END:VEVENT
END:VCALENDAR
"""

SINGLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Example Corp//Calendar//EN
BEGIN:VEVENT
UID:dentist@example.com
DTSTAMP:20260101T000000Z
DTSTART:20260504T100000Z
DTEND:20260504T110000Z
SUMMARY:Dentist
END:VEVENT
END:VCALENDAR
"""

JOHN_VCF = """BEGIN:VCARD
VERSION:3.0
UID:john-doe@example.com
FN:John Doe
N:Doe;John;;;
EMAIL;TYPE=INTERNET:john@example.com
EMAIL;TYPE=WORK:j.doe@work.example.com
TEL;TYPE=CELL:+1 555 0100
ORG:Example Corp;Engineering
PHOTO;VALUE=URI:https://example.com/photo.jpg
item1.URL:https://example.com
item1.X-ABLABEL:Homepage
X-CUSTOM:keep-me
END:VCARD
"""


def unfold(text: str) -> str:
    """Undo RFC 5545/6350 line folding and normalize line endings."""
    return text.replace("\r\n", "\n").replace("\n ", "").replace("\n\t", "")


# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------


class FakeRemoteClient:
    """In-memory RemoteClient with etag and ctag bookkeeping."""

    def __init__(self):
        self.calendars = [
            Collection(url=WORK_CALENDAR, display_name="Work"),
            Collection(url=HOME_CALENDAR, display_name="Home"),
        ]
        self.address_books = [Collection(url=CONTACTS, display_name="Contacts")]
        self.objects: dict[str, dict[str, RemoteObject]] = {
            c.url: {} for c in self.calendars + self.address_books
        }
        self.ctags: dict[str, int] = {url: 1 for url in self.objects}
        self.calls: list[tuple] = []
        # Statuses returned by the next PUT/DELETE calls before normal handling
        self.put_statuses: list[int] = []
        self.delete_statuses: list[int] = []
        self.bulk_empty = False
        self.supports_ctag = True
        self._etag_counter = 0

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def _collection_of(url: str) -> str:
        return url[: url.rfind("/") + 1]

    def _next_etag(self) -> str:
        self._etag_counter += 1
        return f'"etag-{self._etag_counter}"'

    def _bump(self, collection: str):
        self.ctags[collection] += 1

    def add(self, collection: str, name: str, data: str) -> RemoteObject:
        """Store an object as if another client had created it."""
        obj = RemoteObject(url=f"{collection}{name}", data=data, etag=self._next_etag())
        self.objects[collection][obj.url] = obj
        self._bump(collection)
        return obj

    def modify(self, url: str, data: Optional[str] = None) -> RemoteObject:
        """Change an object behind the service's back."""
        collection = self._collection_of(url)
        current = self.objects[collection][url]
        obj = RemoteObject(url=url, data=data or current.data, etag=self._next_etag())
        self.objects[collection][url] = obj
        self._bump(collection)
        return obj

    def stored(self, url: str) -> Optional[RemoteObject]:
        return self.objects.get(self._collection_of(url), {}).get(url)

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    # -- RemoteClient -----------------------------------------------------

    def discover_calendars(self) -> list[Collection]:
        self.calls.append(("discover_calendars",))
        return list(self.calendars)

    def discover_address_books(self) -> list[Collection]:
        self.calls.append(("discover_address_books",))
        return list(self.address_books)

    def get_ctag(self, url: str) -> Optional[str]:
        self.calls.append(("get_ctag", url))
        if not self.supports_ctag:
            return None
        return f"ctag-{self.ctags[url]}"

    def fetch_calendar_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        self.calls.append(("fetch_calendar_objects", url, time_range))
        return list(self.objects[url].values())

    def fetch_address_book_objects(self, url: str) -> list[RemoteObject]:
        self.calls.append(("fetch_address_book_objects", url))
        if self.bulk_empty:
            return []
        return list(self.objects[url].values())

    def list_object_urls(self, url: str) -> list[str]:
        self.calls.append(("list_object_urls", url))
        return list(self.objects[url])

    def get_object(self, url: str) -> Optional[RemoteObject]:
        self.calls.append(("get_object", url))
        return self.stored(url)

    def put_object(
        self,
        url: str,
        data: str,
        content_type: str,
        etag: Optional[str] = None,
        create: bool = False,
    ) -> WriteResponse:
        self.calls.append(("put_object", url, content_type, etag, create))
        if self.put_statuses:
            return WriteResponse(status=self.put_statuses.pop(0))

        collection = self._collection_of(url)
        existing = self.objects[collection].get(url)
        if create and existing is not None:
            return WriteResponse(status=412)
        if etag and (existing is None or existing.etag != etag):
            return WriteResponse(status=412)

        obj = RemoteObject(url=url, data=data, etag=self._next_etag())
        self.objects[collection][url] = obj
        self._bump(collection)
        return WriteResponse(status=201 if existing is None else 204, etag=obj.etag)

    def delete_object(self, url: str, etag: Optional[str] = None) -> WriteResponse:
        self.calls.append(("delete_object", url, etag))
        if self.delete_statuses:
            return WriteResponse(status=self.delete_statuses.pop(0))

        collection = self._collection_of(url)
        existing = self.objects[collection].get(url)
        if existing is None:
            return WriteResponse(status=404)
        if etag and existing.etag != etag:
            return WriteResponse(status=412)
        del self.objects[collection][url]
        self._bump(collection)
        return WriteResponse(status=204)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without any waiting."""
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def calendar_service(fake_client, fast_policy) -> CalendarService:
    return CalendarService(fake_client, retry_policy=fast_policy)


@pytest.fixture
def contact_service(fake_client, fast_policy) -> ContactService:
    return ContactService(fake_client, retry_policy=fast_policy)
