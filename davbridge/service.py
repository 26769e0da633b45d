"""
Shared machinery of the calendar and contact services.

A service owns one remote client, one CollectionCache and a retry policy.
The remote client is blocking; every call runs in a worker thread through
asyncio.to_thread() and is wrapped in with_retry().
"""

import asyncio
import logging
import uuid
from typing import Callable, Optional

from .cache import CollectionCache
from .errors import (
    CollectionNotFoundError,
    ConflictError,
    ObjectNotFoundError,
    RemoteRequestError,
)
from .models import Collection, RemoteObject, TimeRange, WriteResponse, WriteResult
from .retry import RetryPolicy, with_retry


logger = logging.getLogger(__name__)


def collection_url(url: str) -> str:
    """URL of the collection holding an object: everything up to the last '/'."""
    return url[:url.rfind('/') + 1]


def cache_key(url: str) -> str:
    return url.rstrip('/') + '/'


class CollectionService:
    """
    Base class for services over one kind of DAV collection.

    Subclasses name the resource and bind _discover() and _fetch_objects()
    to the matching remote client methods.
    """

    resource_type = "object"
    content_type = "application/octet-stream"
    extension = ""
    create_conflict_detail: Optional[str] = None

    def __init__(
        self,
        client,
        cache: Optional[CollectionCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_collection: Optional[str] = None,
    ):
        """
        Args:
            client: RemoteClient implementation (blocking)
            cache: Collection cache, a private one if None
            retry_policy: Policy for all remote calls
            default_collection: Display name used for writes without an
                explicit target collection
        """
        self.client = client
        self.cache = cache if cache is not None else CollectionCache()
        self.retry_policy = retry_policy
        self.default_collection = default_collection
        self._collections: Optional[list[Collection]] = None

    # ==================== Hooks ====================

    def _discover(self) -> list[Collection]:
        raise NotImplementedError

    def _fetch_objects(self, url: str, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        raise NotImplementedError

    # ==================== Remote Calls ====================

    async def _call(self, description: str, func: Callable, *args, **kwargs):
        return await with_retry(
            lambda: asyncio.to_thread(func, *args, **kwargs),
            self.retry_policy,
            description,
        )

    async def _write(
        self,
        description: str,
        func: Callable[..., WriteResponse],
        *args,
        conflict_detail: Optional[str] = None,
        **kwargs,
    ) -> WriteResponse:
        """
        Run a PUT/DELETE and turn its status into the write outcome.

        Transient statuses are raised inside the retried operation so that
        with_retry() sees them. A 412 is never retried.
        """
        async def attempt() -> WriteResponse:
            response = await asyncio.to_thread(func, *args, **kwargs)
            if not response.ok and response.status != 412:
                raise RemoteRequestError(response.status, f"Failed to {description}")
            return response

        response = await with_retry(attempt, self.retry_policy, description)
        if response.status == 412:
            logger.warning(
                "Precondition failed",
                extra={"operation": description, "resource": self.resource_type},
            )
            raise ConflictError(self.resource_type, conflict_detail)
        return response

    # ==================== Collections ====================

    async def _list_collections(self) -> list[Collection]:
        if self._collections is None:
            return await self._refresh_collections()
        logger.debug("Returning cached collection list", extra={"resource": self.resource_type})
        return list(self._collections)

    async def _refresh_collections(self) -> list[Collection]:
        self._collections = await self._call(f"discover {self.resource_type} collections", self._discover)
        # Cached objects do not survive re-discovery
        self.cache.clear()
        logger.info(
            "Discovered collections",
            extra={"resource": self.resource_type, "count": len(self._collections)},
        )
        return list(self._collections)

    @staticmethod
    def _match(collections: list[Collection], name: str) -> Optional[Collection]:
        wanted = name.strip().lower()
        for collection in collections:
            if collection.display_name.strip().lower() == wanted:
                return collection
        return None

    async def _target_collection(self, name: Optional[str]) -> Collection:
        """Collection for a write: the named one, the default one, or the first."""
        collections = await self._list_collections()
        name = name or self.default_collection
        if name:
            collection = self._match(collections, name)
            if collection is None:
                raise CollectionNotFoundError(f"No {self.resource_type} collection named {name!r}")
            return collection
        if not collections:
            raise CollectionNotFoundError(f"No {self.resource_type} collection found on the server")
        return collections[0]

    # ==================== Reads ====================

    async def _fetch(self, collection: Collection, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        """
        Objects of one collection.

        Time-range queries always go to the server and are not cached.
        Otherwise the server's ctag decides whether the cached objects
        are still valid.
        """
        key = cache_key(collection.url)
        if time_range is not None:
            logger.debug("Skipping cache for time-range query", extra={"url": collection.url})
            return await self._call(
                f"fetch {self.resource_type}s", self._fetch_objects, collection.url, time_range,
            )

        ctag = await self._call("read ctag", self.client.get_ctag, collection.url)
        if not self.cache.is_dirty(key, ctag):
            entry = self.cache.get(key)
            if entry is not None:
                logger.debug("Using cached objects (ctag match)", extra={"url": collection.url, "ctag": ctag})
                return entry.objects

        objects = await self._call(f"fetch {self.resource_type}s", self._fetch_objects, collection.url)
        if ctag:
            self.cache.put(key, ctag, objects)
        logger.info(
            "Fetched collection",
            extra={"url": collection.url, "count": len(objects), "ctag": ctag},
        )
        return objects

    async def _fetch_all(self, name: Optional[str] = None, time_range: Optional[TimeRange] = None) -> list[RemoteObject]:
        collections = await self._list_collections()
        if name:
            collection = self._match(collections, name)
            if collection is None:
                logger.warning(
                    "Collection not found, returning empty",
                    extra={"resource": self.resource_type, "collection": name},
                )
                return []
            collections = [collection]

        objects = []
        for collection in collections:
            objects.extend(await self._fetch(collection, time_range))
        return objects

    # ==================== Writes ====================

    def _invalidate(self, url: str):
        self.cache.invalidate(cache_key(collection_url(url)))

    async def _create(self, data: str, collection_name: Optional[str]) -> WriteResult:
        collection = await self._target_collection(collection_name)
        url = f"{cache_key(collection.url)}{uuid.uuid4()}{self.extension}"
        response = await self._write(
            f"create {self.resource_type}",
            self.client.put_object,
            url,
            data,
            self.content_type,
            create=True,
            conflict_detail=self.create_conflict_detail,
        )
        self._invalidate(url)
        logger.info(f"Created {self.resource_type}", extra={"url": url, "collection": collection.url})
        return WriteResult(url=url, etag=response.etag)

    async def _update(self, url: str, etag: Optional[str], patch: Callable[[str], str]) -> WriteResult:
        """
        Re-read the object, apply patch to its current text and PUT it back
        with If-Match.

        The caller's etag is the precondition; the fresh read only supplies
        the text to patch, so a concurrent change still ends in a conflict.
        """
        current = await self._call(f"read {self.resource_type}", self.client.get_object, url)
        if current is None:
            raise ObjectNotFoundError(f"Cannot update: {self.resource_type} not found at {url}")

        data = patch(current.data)
        response = await self._write(
            f"update {self.resource_type}",
            self.client.put_object,
            url,
            data,
            self.content_type,
            etag=etag or current.etag,
        )
        self._invalidate(url)
        logger.info(f"Updated {self.resource_type}", extra={"url": url})
        return WriteResult(url=url, etag=response.etag)

    async def _delete(self, url: str, etag: Optional[str] = None):
        if not etag:
            logger.debug("ETag missing, fetching fresh ETag for delete", extra={"url": url})
            objects = await self._call(
                f"fetch {self.resource_type}s", self._fetch_objects, collection_url(url),
            )
            match = next((obj for obj in objects if obj.url == url), None)
            if match is None or not match.etag:
                raise ObjectNotFoundError(
                    f"Cannot delete: {self.resource_type} not found or ETag unavailable"
                )
            etag = match.etag

        await self._write(f"delete {self.resource_type}", self.client.delete_object, url, etag)
        self._invalidate(url)
        logger.info(f"Deleted {self.resource_type}", extra={"url": url})
