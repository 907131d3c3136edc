"""
Redis Cache

Redis implementation of the key/value cache used for policy documents and
evaluation results.
"""

from typing import Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.security.exceptions import CacheUnavailable

from .base import KeyValueCache


logger = structlog.get_logger(__name__)


class RedisCache(KeyValueCache):
    """
    Redis-backed cache.

    Wraps an async Redis client and maps Redis errors to ``CacheUnavailable``.
    TTLs are applied with SETEX; pattern deletes walk the keyspace with SCAN.
    """

    SCAN_BATCH_SIZE = 500

    def __init__(self, redis_client: Redis):
        """
        Initialize the cache.

        Args:
            redis_client: Async Redis client instance
        """
        self._redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        """Create a cache from a Redis URL."""
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            raise CacheUnavailable("get", key, e) from e

        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            if ttl is not None:
                await self._redis.setex(key, ttl, value)
            else:
                await self._redis.set(key, value)
        except RedisError as e:
            raise CacheUnavailable("set", key, e) from e

    async def delete(self, key: str) -> bool:
        try:
            deleted = await self._redis.delete(key)
        except RedisError as e:
            raise CacheUnavailable("delete", key, e) from e
        return deleted > 0

    async def delete_pattern(self, pattern: str) -> int:
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH_SIZE:
                    removed += await self._redis.delete(*batch)
                    batch = []
            if batch:
                removed += await self._redis.delete(*batch)
        except RedisError as e:
            raise CacheUnavailable("delete_pattern", pattern, e) from e
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._redis.aclose()
