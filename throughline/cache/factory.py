"""Select the response cache backend from configuration."""
from typing import Optional

from throughline.utils.config import settings
from throughline.utils.logging import get_logger

logger = get_logger(__name__)


def build_cache(backend: Optional[str] = None):
    """
    Build the configured cache.

    Args:
        backend: "disk", "redis" or "none" (default from settings)

    Returns:
        Cache instance with get/set, or None when caching is off
    """
    backend = (backend or settings.cache_backend).lower()

    if backend == "disk":
        from throughline.cache.disk_cache import DiskCache
        return DiskCache(settings.cache_dir, ttl=settings.cache_ttl)
    if backend == "redis":
        from throughline.cache.redis_client import RedisCache
        return RedisCache(ttl=settings.cache_ttl)
    if backend == "none":
        return None

    raise ValueError(f"Unknown cache backend: {backend}")
