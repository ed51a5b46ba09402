"""Unit tests for throughline.cache.disk_cache (DiskCache, request_cache_key)."""
import os
import time

from throughline.cache.disk_cache import DiskCache, request_cache_key


class TestRequestCacheKey:
    def test_same_request_same_key(self):
        a = request_cache_key("https://api.example.com/paper/abc", "GET")
        b = request_cache_key("https://api.example.com/paper/abc", "get")
        assert a == b

    def test_body_changes_key(self):
        url = "https://api.example.com/papers"
        a = request_cache_key(url, "POST", {"positivePaperIds": ["a"]})
        b = request_cache_key(url, "POST", {"positivePaperIds": ["b"]})
        assert a != b

    def test_method_changes_key(self):
        url = "https://api.example.com/papers"
        assert request_cache_key(url, "GET") != request_cache_key(url, "POST")


class TestDiskCache:
    def test_set_then_get(self, tmp_path):
        cache = DiskCache(str(tmp_path))
        assert cache.set("k1", {"data": [1, 2, 3]}) is True
        assert cache.get("k1") == {"data": [1, 2, 3]}

    def test_miss_returns_none(self, tmp_path):
        cache = DiskCache(str(tmp_path))
        assert cache.get("missing") is None

    def test_creates_directory(self, tmp_path):
        target = tmp_path / "nested" / "cache"
        DiskCache(str(target))
        assert target.is_dir()

    def test_expired_entry_is_removed_on_read(self, tmp_path):
        cache = DiskCache(str(tmp_path), ttl=60)
        cache.set("old", {"v": 1})
        path = tmp_path / "old.json"
        stale = time.time() - 120
        os.utime(path, (stale, stale))

        assert cache.get("old") is None
        assert not path.exists()

    def test_stale_entries_pruned_at_startup(self, tmp_path):
        DiskCache(str(tmp_path), ttl=60).set("old", {"v": 1})
        DiskCache(str(tmp_path), ttl=60).set("fresh", {"v": 2})
        stale = time.time() - 120
        os.utime(tmp_path / "old.json", (stale, stale))

        cache = DiskCache(str(tmp_path), ttl=60)

        assert not (tmp_path / "old.json").exists()
        assert cache.get("fresh") == {"v": 2}

    def test_corrupt_file_is_a_miss(self, tmp_path):
        cache = DiskCache(str(tmp_path))
        (tmp_path / "bad.json").write_text("{truncated", encoding="utf-8")
        assert cache.get("bad") is None

    def test_unserializable_value_not_stored(self, tmp_path):
        cache = DiskCache(str(tmp_path))
        assert cache.set("k", {"v": object()}) is False
        assert cache.get("k") is None
