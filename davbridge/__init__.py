"""
davbridge - CalDAV/CardDAV synchronization of events and contacts

This package provides:
- Configuration parsing (config.py)
- Remote DAV client (dav_client.py)
- Lossless iCalendar/vCard transformation (events.py, contacts.py,
  event_builder.py, contact_builder.py)
- Recurrence expansion (recurrence.py)
- Calendar and contact services with etag concurrency (calendar_service.py,
  contact_service.py)
- ctag collection cache and retry with backoff (cache.py, retry.py)
"""

from .cache import CollectionCache
from .calendar_service import CalendarService
from .config import Config
from .contact_service import ContactService
from .dav_client import DAVRemoteClient, RemoteClient
from .errors import (
    CollectionNotFoundError,
    ConfigError,
    ConflictError,
    DAVBridgeError,
    ObjectNotFoundError,
    RemoteRequestError,
)
from .models import (
    AttendeeInfo,
    AvailabilityPeriod,
    AvailabilityResult,
    Collection,
    ContactName,
    ContactRecord,
    CreateContactInput,
    CreateEventInput,
    EventRecord,
    InvitationRecord,
    OrganizerInfo,
    RemoteObject,
    TimeRange,
    UpdateContactInput,
    UpdateEventInput,
    WriteResponse,
    WriteResult,
)
from .recurrence import RecurrenceWindow, expand_instances, expand_recurrence
from .retry import RetryPolicy, with_retry

__all__ = [
    'Config',
    'DAVRemoteClient',
    'RemoteClient',
    'CalendarService',
    'ContactService',
    'CollectionCache',
    'RetryPolicy',
    'with_retry',
    'RecurrenceWindow',
    'expand_recurrence',
    'expand_instances',
    # Records
    'AttendeeInfo',
    'AvailabilityPeriod',
    'AvailabilityResult',
    'Collection',
    'ContactName',
    'ContactRecord',
    'CreateContactInput',
    'CreateEventInput',
    'EventRecord',
    'InvitationRecord',
    'OrganizerInfo',
    'RemoteObject',
    'TimeRange',
    'UpdateContactInput',
    'UpdateEventInput',
    'WriteResponse',
    'WriteResult',
    # Errors
    'DAVBridgeError',
    'ConflictError',
    'RemoteRequestError',
    'ConfigError',
    'CollectionNotFoundError',
    'ObjectNotFoundError',
]
