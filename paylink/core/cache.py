"""Redis cache for reference data."""
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

from paylink.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """Thin wrapper around Redis. Every call degrades to a cache miss if Redis is down."""

    def __init__(self, url: str | None = None):
        self._url = settings.redis_url if url is None else url
        self._redis: Optional[redis.Redis] = None

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def connect(self):
        """Connect to Redis."""
        if self._redis or not self.enabled:
            return
        try:
            self._redis = redis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
            )
            await self._redis.ping()
        except Exception as e:
            # Work without the cache
            logger.warning(f"⚠️ Redis unavailable, cache disabled: {e}")
            self._redis = None

    async def disconnect(self):
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str) -> Any | None:
        await self.connect()
        if not self._redis:
            return None

        try:
            value = await self._redis.get(key)
            return json.loads(value) if value else None
        except Exception as e:
            logger.warning(f"⚠️ Cache read failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        await self.connect()
        if not self._redis:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await self._redis.setex(key, ttl or settings.reference_cache_ttl_seconds, serialized)
            return True
        except Exception as e:
            logger.warning(f"⚠️ Cache write failed for {key}: {e}")
            return False


# Global instance
cache_service = CacheService()


def get_cache_key_payment_setting(payment_setting_id: str) -> str:
    return f"payment_setting:{payment_setting_id}"


def get_cache_key_constant(key: str) -> str:
    return f"constant:{key}"
