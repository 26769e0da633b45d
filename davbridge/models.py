"""
Record types shared between the transformation layer, the services and callers.

Read records (EventRecord, ContactRecord) describe what the server holds.
Write inputs (Create*/Update*) describe an intent to change: a field left at
None is never touched. Remote* types are the narrow adapter shapes at the
boundary to the DAV client.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar, Union


T = TypeVar('T')

DateLike = Union[str, datetime]


# ==================== Remote Boundary ====================

@dataclass(frozen=True)
class Collection:
    """A calendar or address book collection on the server."""
    url: str
    display_name: str = ""
    ctag: Optional[str] = None


@dataclass(frozen=True)
class RemoteObject:
    """One stored calendar object or vCard, as returned by the server."""
    url: str
    data: str
    etag: Optional[str] = None


@dataclass(frozen=True)
class WriteResponse:
    """Status and entity tag of a PUT or DELETE."""
    status: int
    etag: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class WriteResult:
    """Result of a successful service write."""
    url: str
    etag: Optional[str] = None


@dataclass(frozen=True)
class TimeRange:
    """Server-side time-range filter for calendar queries."""
    start: datetime
    end: datetime


# ==================== Events ====================

@dataclass
class AttendeeInfo:
    """Structured ATTENDEE property."""
    name: str
    email: str
    partstat: str = "NEEDS-ACTION"
    role: str = "REQ-PARTICIPANT"
    rsvp: Optional[bool] = None


@dataclass
class EventRecord:
    """
    A parsed VEVENT.

    `_raw` holds the complete original VCALENDAR text. Updates never rebuild
    it from the typed fields.
    """
    uid: str
    summary: str
    start: datetime
    end: datetime
    url: str
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: list[str] = field(default_factory=list)
    attendee_details: list[AttendeeInfo] = field(default_factory=list)
    timezone: Optional[str] = None
    status: Optional[str] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None
    all_day: bool = False
    alarm_count: int = 0
    etag: Optional[str] = None
    _raw: str = field(default="", repr=False)

    @property
    def duration(self):
        return self.end - self.start


@dataclass
class OrganizerInfo:
    name: str = "Unknown"
    email: str = ""


@dataclass
class InvitationRecord:
    """
    A scheduling request as seen by one attendee.

    `user_partstat` is the PARTSTAT of the ATTENDEE whose address matches
    the user, NEEDS-ACTION if the user is not listed.
    """
    uid: str
    summary: str
    organizer: OrganizerInfo
    proposed_start: datetime
    proposed_end: datetime
    url: str
    user_partstat: str = "NEEDS-ACTION"
    location: Optional[str] = None
    etag: Optional[str] = None
    _raw: str = field(default="", repr=False)


@dataclass
class CreateEventInput:
    """Fields for a brand-new event."""
    title: str
    start: DateLike
    end: DateLike
    description: Optional[str] = None
    location: Optional[str] = None
    all_day: bool = False
    recurrence: Optional[str] = None  # RRULE value, e.g. "FREQ=WEEKLY;BYDAY=MO"
    calendar: Optional[str] = None  # Target calendar display name
    timezone: Optional[str] = None


@dataclass
class UpdateEventInput:
    """Changes to an existing event. None means: leave as is."""
    title: Optional[str] = None
    start: Optional[DateLike] = None
    end: Optional[DateLike] = None
    description: Optional[str] = None
    location: Optional[str] = None
    recurrence: Optional[str] = None

    def is_empty(self) -> bool:
        return all(
            value is None for value in (
                self.title, self.start, self.end,
                self.description, self.location, self.recurrence,
            )
        )


# ==================== Contacts ====================

@dataclass
class ContactName:
    """Formatted and structured parts of a contact's name."""
    formatted: Optional[str] = None
    given: Optional[str] = None
    family: Optional[str] = None


@dataclass
class ContactRecord:
    """A parsed vCard. `_raw` keeps the original text for updates."""
    uid: str
    url: str
    name: ContactName = field(default_factory=ContactName)
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    organization: Optional[str] = None
    version: str = "3.0"
    etag: Optional[str] = None
    _raw: str = field(default="", repr=False)


@dataclass
class CreateContactInput:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None
    address_book: Optional[str] = None  # Target address book display name


@dataclass
class UpdateContactInput:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    organization: Optional[str] = None


# ==================== Availability ====================

BUSY = "busy"
TENTATIVE = "tentative"
UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class AvailabilityPeriod:
    start: datetime
    end: datetime
    type: str = BUSY


@dataclass
class AvailabilityResult:
    """Busy periods found between query_start and query_end."""
    query_start: datetime
    query_end: datetime
    periods: list[AvailabilityPeriod] = field(default_factory=list)

    @property
    def is_free(self) -> bool:
        return not self.periods


# ==================== Cache ====================

@dataclass
class CacheEntry(Generic[T]):
    """Objects of one collection as of the given ctag."""
    ctag: str
    objects: list[T]
    fetched_at: float
