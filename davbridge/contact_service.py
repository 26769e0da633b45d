"""
Contact service: vCards on CardDAV address books.
"""

import logging
from typing import Optional

from .cache import CollectionCache
from .contact_builder import build_contact, patch_contact
from .contacts import parse_contacts
from .models import (
    Collection,
    ContactRecord,
    CreateContactInput,
    RemoteObject,
    TimeRange,
    UpdateContactInput,
    WriteResult,
)
from .retry import RetryPolicy
from .service import CollectionService


logger = logging.getLogger(__name__)


class ContactService(CollectionService):
    """Contacts across the address books of one CardDAV account."""

    resource_type = "contact"
    content_type = "text/vcard"
    extension = ".vcf"
    create_conflict_detail = (
        "A contact with this UID already exists. "
        "Use a different UID or update the existing contact."
    )

    def __init__(
        self,
        client,
        cache: Optional[CollectionCache[RemoteObject]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_address_book: Optional[str] = None,
    ):
        super().__init__(client, cache, retry_policy, default_address_book)

    def _discover(self) -> list[Collection]:
        return self.client.discover_address_books()

    def _fetch_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        """
        All vCards of an address book.

        Some servers answer the bulk query with no data; the members are
        then listed and fetched one by one.
        """
        objects = self.client.fetch_address_book_objects(url)
        if objects:
            return objects

        urls = self.client.list_object_urls(url)
        if not urls:
            return []
        logger.info(
            "Bulk address book query returned nothing, fetching objects individually",
            extra={"url": url, "count": len(urls)},
        )
        objects = []
        for object_url in urls:
            obj = self.client.get_object(object_url)
            if obj is not None:
                objects.append(obj)
        return objects

    # ==================== Read Path ====================

    async def list_address_books(self) -> list[Collection]:
        return await self._list_collections()

    async def refresh_address_books(self) -> list[Collection]:
        logger.info("Refreshing address book list")
        return await self._refresh_collections()

    async def fetch_contacts(self, collection: Collection) -> list[RemoteObject]:
        return await self._fetch(collection)

    async def fetch_all_contacts(self, address_book_name: Optional[str] = None) -> list[RemoteObject]:
        objects = await self._fetch_all(address_book_name)
        logger.info(
            "Fetched contacts",
            extra={"address_book": address_book_name, "count": len(objects)},
        )
        return objects

    async def list_contacts(self, address_book_name: Optional[str] = None) -> list[ContactRecord]:
        return parse_contacts(await self.fetch_all_contacts(address_book_name))

    async def find_contact_by_uid(self, uid: str, address_book_name: Optional[str] = None) -> Optional[ContactRecord]:
        for record in await self.list_contacts(address_book_name):
            if record.uid == uid:
                logger.debug("Found contact by UID", extra={"uid": uid, "url": record.url})
                return record
        logger.debug("Contact not found by UID", extra={"uid": uid})
        return None

    # ==================== Write Path ====================

    async def create_contact(self, input: CreateContactInput) -> WriteResult:
        return await self._create(build_contact(input), input.address_book)

    async def update_contact(self, url: str, etag: Optional[str], input: UpdateContactInput) -> WriteResult:
        """
        Apply input to the vCard at url, guarded by etag.

        Raises:
            ConflictError: if the contact changed since etag was read
        """
        return await self._update(url, etag, lambda raw: patch_contact(raw, input))

    async def delete_contact(self, url: str, etag: Optional[str] = None):
        await self._delete(url, etag)
