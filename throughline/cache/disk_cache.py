"""On-disk content-addressed cache for API responses."""
import hashlib
import json
import time
from pathlib import Path
from typing import Any, Optional

from throughline.utils.logging import get_logger

logger = get_logger(__name__)


def request_cache_key(url: str, method: str = "GET", body: Any = None) -> str:
    """Hash of (url, method, body) identifying one request."""
    payload = json.dumps(
        {"url": url, "method": method.upper(), "body": body},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DiskCache:
    """JSON files named by key hash, expired by modification time."""

    def __init__(self, directory: str, ttl: int = 604800):
        """
        Initialize cache and prune stale entries.

        Args:
            directory: Cache directory (created if missing)
            ttl: Time-to-live in seconds
        """
        self.directory = Path(directory)
        self.ttl = ttl
        self.directory.mkdir(parents=True, exist_ok=True)
        pruned = self.prune_expired()
        if pruned:
            logger.info(f"Pruned {pruned} stale cache entries from {self.directory}")

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def _is_fresh(self, path: Path) -> bool:
        return (time.time() - path.stat().st_mtime) < self.ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache, None on miss, expiry or unreadable file."""
        path = self._path(key)
        if not path.exists():
            return None

        try:
            if not self._is_fresh(path):
                path.unlink(missing_ok=True)
                return None
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read cache {path}: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        """Store value under key."""
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(value, f)
            tmp_path.replace(path)
            logger.debug(f"Cached to {path}")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write cache {path}: {e}")
            return False

    def prune_expired(self) -> int:
        """Delete entries older than the TTL. Returns number removed."""
        removed = 0
        for path in self.directory.glob("*.json"):
            try:
                if not self._is_fresh(path):
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to prune cache entry {path}: {e}")
        return removed
