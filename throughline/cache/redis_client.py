"""Redis cache client for API response caching."""
import json
from typing import Optional, Any
import redis
from throughline.utils.config import settings
from throughline.utils.logging import get_logger

logger = get_logger(__name__)


class RedisCache:
    """Redis-backed alternative to DiskCache with the same get/set contract."""

    def __init__(self, ttl: Optional[int] = None, prefix: str = "throughline:"):
        """Initialize Redis connection."""
        self.ttl = ttl or settings.cache_ttl
        self.prefix = prefix
        try:
            self.client = redis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                password=settings.redis_password if settings.redis_password else None,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self.client.ping()
            logger.info("Redis cache connected successfully")
        except redis.ConnectionError as e:
            logger.warning(f"Redis connection failed: {e}. Cache disabled.")
            self.client = None

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        if not self.client:
            return None

        try:
            value = self.client.get(self.prefix + key)
            if value:
                return json.loads(value)
            return None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get error for key {key}: {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        """Set value in cache with the configured TTL (Redis expires it)."""
        if not self.client:
            return False

        try:
            self.client.setex(self.prefix + key, self.ttl, json.dumps(value))
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(f"Cache set error for key {key}: {e}")
            return False
