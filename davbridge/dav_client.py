"""
Blocking CalDAV/CardDAV client.

Wraps caldav.DAVClient for connection handling, authentication and calendar
discovery. Collection queries are issued as raw PROPFIND/REPORT requests and
the multistatus answers parsed with lxml, since caldav has no CardDAV support
and its object wrappers hide the entity tags needed for optimistic
concurrency.

Every method returns the narrow records from models.py. Write methods never
raise on HTTP status; the caller inspects WriteResponse.status.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol
from urllib.parse import urljoin

import caldav
from caldav.lib import error as dav_error
import lxml.etree as etree
import pytz

from .errors import RemoteRequestError
from .models import Collection, RemoteObject, TimeRange, WriteResponse


logger = logging.getLogger(__name__)

DAV_NS = 'DAV:'
CALDAV_NS = 'urn:ietf:params:xml:ns:caldav'
CARDDAV_NS = 'urn:ietf:params:xml:ns:carddav'
CALSERVER_NS = 'http://calendarserver.org/ns/'

NS = {'d': DAV_NS, 'c': CALDAV_NS, 'card': CARDDAV_NS, 'cs': CALSERVER_NS}

GETCTAG = etree.QName(CALSERVER_NS, 'getctag')
SYNC_TOKEN = etree.QName(DAV_NS, 'sync-token')
GETETAG = etree.QName(DAV_NS, 'getetag')
DISPLAYNAME = etree.QName(DAV_NS, 'displayname')
RESOURCETYPE = etree.QName(DAV_NS, 'resourcetype')
CALENDAR_DATA = etree.QName(CALDAV_NS, 'calendar-data')
ADDRESS_DATA = etree.QName(CARDDAV_NS, 'address-data')
ADDRESSBOOK = etree.QName(CARDDAV_NS, 'addressbook')
ADDRESSBOOK_HOME_SET = etree.QName(CARDDAV_NS, 'addressbook-home-set')

CTAG_PROPFIND = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:" xmlns:CS="http://calendarserver.org/ns/">
  <D:prop>
    <CS:getctag/>
    <D:sync-token/>
  </D:prop>
</D:propfind>"""

ADDRESSBOOK_HOME_PROPFIND = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:" xmlns:CR="urn:ietf:params:xml:ns:carddav">
  <D:prop>
    <CR:addressbook-home-set/>
  </D:prop>
</D:propfind>"""

COLLECTION_PROPFIND = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:" xmlns:CS="http://calendarserver.org/ns/">
  <D:prop>
    <D:resourcetype/>
    <D:displayname/>
    <CS:getctag/>
  </D:prop>
</D:propfind>"""

ETAG_PROPFIND = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:getetag/>
    <D:resourcetype/>
  </D:prop>
</D:propfind>"""

CALENDAR_QUERY = """<?xml version="1.0" encoding="utf-8" ?>
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop>
    <D:getetag/>
    <C:calendar-data/>
  </D:prop>
  <C:filter>
    <C:comp-filter name="VCALENDAR">
      <C:comp-filter name="VEVENT">{time_range}</C:comp-filter>
    </C:comp-filter>
  </C:filter>
</C:calendar-query>"""

ADDRESSBOOK_QUERY = """<?xml version="1.0" encoding="utf-8" ?>
<CR:addressbook-query xmlns:D="DAV:" xmlns:CR="urn:ietf:params:xml:ns:carddav">
  <D:prop>
    <D:getetag/>
    <CR:address-data/>
  </D:prop>
</CR:addressbook-query>"""


class RemoteClient(Protocol):
    """What the services need from a DAV server."""

    def discover_calendars(self) -> list[Collection]: ...

    def discover_address_books(self) -> list[Collection]: ...

    def get_ctag(self, url: str) -> Optional[str]: ...

    def fetch_calendar_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]: ...

    def fetch_address_book_objects(self, url: str) -> list[RemoteObject]: ...

    def list_object_urls(self, url: str) -> list[str]: ...

    def get_object(self, url: str) -> Optional[RemoteObject]: ...

    def put_object(self, url: str, data: str, content_type: str, etag: Optional[str] = None,
                   create: bool = False) -> WriteResponse: ...

    def delete_object(self, url: str, etag: Optional[str] = None) -> WriteResponse: ...


def format_utc(dt: datetime) -> str:
    """iCalendar UTC form used in time-range filters."""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC).strftime('%Y%m%dT%H%M%SZ')


def parse_multistatus(raw) -> list[tuple[str, dict]]:
    """
    Parse a 207 Multi-Status body.

    Returns:
        (href, {QName text: element}) per response, holding only the
        properties of propstats with status 200.
    """
    if isinstance(raw, str):
        raw = raw.encode('utf-8')
    root = etree.fromstring(raw)
    results = []
    for response in root.iter(f'{{{DAV_NS}}}response'):
        href = response.findtext('d:href', namespaces=NS)
        if not href:
            continue
        props = {}
        for propstat in response.findall('d:propstat', NS):
            status = (propstat.findtext('d:status', namespaces=NS) or '').split()
            if len(status) < 2 or status[1] != '200':
                continue
            prop = propstat.find('d:prop', NS)
            if prop is None:
                continue
            for element in prop:
                props[element.tag] = element
        results.append((href.strip(), props))
    return results


def _text(props: dict, name: etree.QName) -> Optional[str]:
    element = props.get(name.text)
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


class DAVRemoteClient:
    """Client for a CalDAV/CardDAV server, one account."""

    def __init__(self, url: str, username: str, password: str, timeout: Optional[int] = 30):
        """
        Initialize the client. No request is made until first use.

        Args:
            url: Server or principal URL (e.g. https://dav.example.com/remote.php/dav)
            username: Account user name
            password: Password or app token
            timeout: Seconds per HTTP request
        """
        self.url = url.rstrip('/') + '/'
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: Optional[caldav.DAVClient] = None
        self._principal: Optional[caldav.Principal] = None

    # ==================== Connection ====================

    def connect(self):
        """Establish the connection and resolve the current user principal."""
        self._client = caldav.DAVClient(
            url=self.url,
            username=self.username,
            password=self.password,
            timeout=self.timeout,
        )
        self._principal = self._client.principal()
        logger.info("Connected to DAV server", extra={"url": self.url})

    @property
    def client(self) -> caldav.DAVClient:
        if self._client is None:
            self.connect()
        return self._client

    @property
    def principal(self) -> caldav.Principal:
        if self._principal is None:
            self.connect()
        return self._principal

    def _absolute(self, href: str) -> str:
        return urljoin(self.url, href)

    def _check(self, response, what: str):
        if response.status >= 400:
            raise RemoteRequestError(response.status, f"{what} failed: {response.reason}")

    # ==================== Discovery ====================

    def discover_calendars(self) -> list[Collection]:
        collections = []
        for cal in self.principal.calendars():
            try:
                name = cal.name or ""
            except dav_error.DAVError as e:
                logger.warning("Could not read calendar name", extra={"url": str(cal.url), "error": str(e)})
                name = ""
            collections.append(Collection(url=str(cal.url), display_name=name))
        logger.debug("Discovered calendars", extra={"count": len(collections)})
        return collections

    def discover_address_books(self) -> list[Collection]:
        principal_url = str(self.principal.url)
        response = self.client.propfind(principal_url, props=ADDRESSBOOK_HOME_PROPFIND, depth=0)
        self._check(response, "PROPFIND addressbook-home-set")

        homes = []
        for _, props in parse_multistatus(response.raw):
            element = props.get(ADDRESSBOOK_HOME_SET.text)
            if element is not None:
                homes.extend(h.text.strip() for h in element.findall('d:href', NS) if h.text)
        if not homes:
            logger.warning("Server reports no addressbook-home-set", extra={"url": principal_url})
            return []

        collections = []
        for home in homes:
            home_url = self._absolute(home)
            response = self.client.propfind(home_url, props=COLLECTION_PROPFIND, depth=1)
            self._check(response, "PROPFIND address books")
            for href, props in parse_multistatus(response.raw):
                resourcetype = props.get(RESOURCETYPE.text)
                if resourcetype is None or resourcetype.find(ADDRESSBOOK.text) is None:
                    continue
                collections.append(Collection(
                    url=self._absolute(href),
                    display_name=_text(props, DISPLAYNAME) or "",
                    ctag=_text(props, GETCTAG),
                ))
        logger.debug("Discovered address books", extra={"count": len(collections)})
        return collections

    # ==================== Reads ====================

    def get_ctag(self, url: str) -> Optional[str]:
        """
        Current collection tag, or None if the server offers neither
        CS:getctag nor DAV:sync-token.
        """
        response = self.client.propfind(url, props=CTAG_PROPFIND, depth=0)
        self._check(response, "PROPFIND getctag")
        for _, props in parse_multistatus(response.raw):
            ctag = _text(props, GETCTAG) or _text(props, SYNC_TOKEN)
            if ctag:
                return ctag
        return None

    def _report(self, url: str, query: str, data_name: etree.QName) -> list[RemoteObject]:
        response = self.client.report(url, query, depth=1)
        self._check(response, "REPORT")
        objects = []
        for href, props in parse_multistatus(response.raw):
            data = _text(props, data_name)
            if data is None:
                continue
            objects.append(RemoteObject(
                url=self._absolute(href),
                data=props[data_name.text].text,
                etag=_text(props, GETETAG),
            ))
        return objects

    def fetch_calendar_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        """
        All VEVENT objects of a calendar, optionally restricted server-side
        to a time range.
        """
        time_filter = ""
        if time_range is not None:
            time_filter = (
                f'<C:time-range start="{format_utc(time_range.start)}" '
                f'end="{format_utc(time_range.end)}"/>'
            )
        objects = self._report(url, CALENDAR_QUERY.format(time_range=time_filter), CALENDAR_DATA)
        logger.debug("Fetched calendar objects", extra={"url": url, "count": len(objects)})
        return objects

    def fetch_address_book_objects(self, url: str) -> list[RemoteObject]:
        objects = self._report(url, ADDRESSBOOK_QUERY, ADDRESS_DATA)
        logger.debug("Fetched address book objects", extra={"url": url, "count": len(objects)})
        return objects

    def list_object_urls(self, url: str) -> list[str]:
        """URLs of the member resources of a collection (Depth: 1 PROPFIND)."""
        response = self.client.propfind(url, props=ETAG_PROPFIND, depth=1)
        self._check(response, "PROPFIND members")
        collection = self._absolute(url)
        urls = []
        for href, props in parse_multistatus(response.raw):
            member = self._absolute(href)
            if member.rstrip('/') == collection.rstrip('/'):
                continue
            urls.append(member)
        return urls

    def get_object(self, url: str) -> Optional[RemoteObject]:
        """GET one resource, None if it does not exist."""
        response = self.client.request(url, "GET")
        if response.status == 404:
            return None
        self._check(response, "GET")
        return RemoteObject(url=url, data=response.raw, etag=response.headers.get('ETag'))

    # ==================== Writes ====================

    def put_object(
        self,
        url: str,
        data: str,
        content_type: str,
        etag: Optional[str] = None,
        create: bool = False,
    ) -> WriteResponse:
        """
        PUT a resource with a precondition.

        Args:
            url: Resource URL
            data: iCalendar or vCard text
            content_type: MIME type of data
            etag: Sent as If-Match when given
            create: Send If-None-Match: * so an existing resource is never
                overwritten
        """
        headers = {'Content-Type': f'{content_type}; charset=utf-8'}
        if create:
            headers['If-None-Match'] = '*'
        elif etag:
            headers['If-Match'] = etag
        response = self.client.put(url, data, headers)
        logger.debug("PUT", extra={"url": url, "status": response.status})
        return WriteResponse(status=response.status, etag=response.headers.get('ETag'))

    def delete_object(self, url: str, etag: Optional[str] = None) -> WriteResponse:
        headers = {'If-Match': etag} if etag else {}
        response = self.client.request(url, "DELETE", "", headers)
        logger.debug("DELETE", extra={"url": url, "status": response.status})
        return WriteResponse(status=response.status)
