"""
In-memory collection cache keyed by collection URL and validated by ctag.

The cache is passive: services read the collection's current ctag from the
server and ask is_dirty() whether they can serve the stored objects.
"""

import logging
import time
from typing import Generic, Optional

from .models import CacheEntry, T


logger = logging.getLogger(__name__)


class CollectionCache(Generic[T]):
    """
    Objects per collection, as of a given ctag.

    Args:
        max_age: Optional lifetime of an entry in seconds. Disabled (None)
            by default: the ctag alone decides freshness.
    """

    def __init__(self, max_age: Optional[float] = None):
        self.max_age = max_age
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def _expired(self, entry: CacheEntry[T]) -> bool:
        if self.max_age is None:
            return False
        return time.time() - entry.fetched_at > self.max_age

    def is_dirty(self, url: str, ctag: Optional[str]) -> bool:
        """
        Whether the collection must be re-fetched.

        Always True when the server reports no ctag, when nothing is cached
        for url, or when the cached ctag differs.
        """
        if not ctag:
            return True
        entry = self._entries.get(url)
        if entry is None or self._expired(entry):
            return True
        return entry.ctag != ctag

    def get(self, url: str) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(url)
        if entry is None or self._expired(entry):
            return None
        return CacheEntry(ctag=entry.ctag, objects=list(entry.objects), fetched_at=entry.fetched_at)

    def put(self, url: str, ctag: str, objects: list[T]):
        """Replace the entry for url wholesale."""
        self._entries[url] = CacheEntry(ctag=ctag, objects=list(objects), fetched_at=time.time())
        logger.debug(
            "Cache updated for collection",
            extra={"url": url, "ctag": ctag, "object_count": len(objects)},
        )

    def invalidate(self, url: str):
        if self._entries.pop(url, None) is not None:
            logger.debug("Cache invalidated for collection", extra={"url": url})

    def clear(self):
        self._entries.clear()
