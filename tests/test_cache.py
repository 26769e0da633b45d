"""Tests for the ctag-validated collection cache."""

from __future__ import annotations

from unittest.mock import patch

from davbridge.cache import CollectionCache
from davbridge.models import RemoteObject

URL = "https://dav.example.com/calendars/user/work/"
OBJECTS = [RemoteObject(url=f"{URL}a.ics", data="A", etag='"1"')]


class TestIsDirty:
    def test_unknown_collection_is_dirty(self):
        assert CollectionCache().is_dirty(URL, "ctag-1") is True

    def test_matching_ctag_is_clean(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        assert cache.is_dirty(URL, "ctag-1") is False

    def test_changed_ctag_is_dirty(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        assert cache.is_dirty(URL, "ctag-2") is True

    def test_missing_ctag_is_always_dirty(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        assert cache.is_dirty(URL, None) is True
        assert cache.is_dirty(URL, "") is True


class TestEntries:
    def test_get_returns_stored_objects(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        entry = cache.get(URL)
        assert entry.ctag == "ctag-1"
        assert entry.objects == OBJECTS

    def test_get_returns_a_copy(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        cache.get(URL).objects.clear()
        assert len(cache.get(URL).objects) == 1

    def test_put_replaces_entry(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        cache.put(URL, "ctag-2", [])
        assert cache.get(URL).ctag == "ctag-2"
        assert cache.get(URL).objects == []
        assert len(cache) == 1

    def test_invalidate(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        cache.invalidate(URL)
        assert URL not in cache
        assert cache.get(URL) is None
        assert cache.is_dirty(URL, "ctag-1") is True

    def test_invalidate_unknown_is_harmless(self):
        CollectionCache().invalidate(URL)

    def test_clear(self):
        cache = CollectionCache()
        cache.put(URL, "ctag-1", OBJECTS)
        cache.put(f"{URL}other/", "ctag-9", [])
        cache.clear()
        assert len(cache) == 0


class TestMaxAge:
    def test_no_expiry_by_default(self):
        cache = CollectionCache()
        with patch("davbridge.cache.time") as clock:
            clock.time.return_value = 1000.0
            cache.put(URL, "ctag-1", OBJECTS)
            clock.time.return_value = 10_000_000.0
            assert cache.is_dirty(URL, "ctag-1") is False

    def test_expired_entry_is_dirty(self):
        cache = CollectionCache(max_age=60)
        with patch("davbridge.cache.time") as clock:
            clock.time.return_value = 1000.0
            cache.put(URL, "ctag-1", OBJECTS)
            clock.time.return_value = 1030.0
            assert cache.is_dirty(URL, "ctag-1") is False
            clock.time.return_value = 1061.0
            assert cache.is_dirty(URL, "ctag-1") is True
            assert cache.get(URL) is None
