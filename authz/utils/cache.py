"""
Redis tier of the decision cache

Errors are never raised to callers: every failure is logged, counted and
reported through last_error_at so the health report can show a degraded
tier, while the decision cache keeps working from L1 alone.
"""

import json
import logging
import time
from typing import Any

import redis.asyncio as redis

from authz.utils.metrics import REDIS_CONNECTED, record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)

# Seconds between reconnect attempts after a failed connect
RECONNECT_COOLDOWN = 30


class CacheManager:
    """
    Manages the Redis connection used as the shared decision cache.

    Disabled entirely when no redis_url is configured: every operation is a
    no-op and health reports "disabled".
    """

    def __init__(self, redis_url: str | None, client: redis.Redis | None = None):
        self._redis_url = redis_url
        self._redis: redis.Redis | None = client
        self._pool: redis.ConnectionPool | None = None
        self._enabled = client is not None or redis_url is not None
        self._last_connect_attempt: float = 0
        self.errors = 0
        self.last_error_at: float | None = None

    @property
    def configured(self) -> bool:
        return self._redis_url is not None or self._redis is not None

    @property
    def connected(self) -> bool:
        return self._enabled and self._redis is not None

    async def connect(self) -> None:
        """Establish connection to Redis."""
        if self._redis is not None or not self._redis_url:
            return

        self._last_connect_attempt = time.time()
        try:
            self._pool = redis.ConnectionPool.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
            self._redis = redis.Redis(connection_pool=self._pool)
            await self._redis.ping()
            self._enabled = True
            REDIS_CONNECTED.set(1)
            logger.info("Cache: Successfully connected to Redis")
        except Exception as e:
            REDIS_CONNECTED.set(0)
            self._record_error()
            logger.warning(f"Cache: Failed to connect to Redis: {e}. Continuing with L1 only.")
            self._redis = None
            self._enabled = False

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        REDIS_CONNECTED.set(0)
        logger.info("Cache: Disconnected from Redis")

    async def _maybe_retry_connect(self) -> None:
        """Re-attempt connection after a cooldown to allow self-healing."""
        if (
            self._redis_url
            and not self._enabled
            and time.time() - self._last_connect_attempt >= RECONNECT_COOLDOWN
        ):
            logger.info("Cache: retrying Redis connection after cooldown...")
            self._redis = None
            self._pool = None
            await self.connect()

    def _record_error(self) -> None:
        self.errors += 1
        self.last_error_at = time.monotonic()

    async def _client(self) -> redis.Redis | None:
        await self._maybe_retry_connect()
        if not self._enabled:
            return None
        if self._redis is None:
            await self.connect()
        return self._redis

    async def get(self, key: str) -> Any | None:
        """Get a cached value by key, or None on miss or error."""
        client = await self._client()
        if client is None:
            return None

        try:
            data = await client.get(key)
            if data:
                logger.debug(f"Cache HIT: {key}")
                record_cache_hit("l2")
                return json.loads(data)

            logger.debug(f"Cache MISS: {key}")
            record_cache_miss("l2")
            return None
        except Exception as e:
            self._record_error()
            logger.warning(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Set a cached value with a TTL in seconds. Returns False on error."""
        client = await self._client()
        if client is None:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl, serialized)
            logger.debug(f"Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            self._record_error()
            logger.warning(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        client = await self._client()
        if client is None:
            return False

        try:
            await client.delete(key)
            logger.debug(f"Cache DELETE: {key}")
            return True
        except Exception as e:
            self._record_error()
            logger.warning(f"Cache delete error for {key}: {e}")
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a pattern.

        Args:
            pattern: Key pattern (e.g., "rbac:cache:<user_id>:*")

        Returns:
            Number of keys deleted
        """
        client = await self._client()
        if client is None:
            return 0

        try:
            keys = []
            async for key in client.scan_iter(match=pattern):
                keys.append(key)

            if keys:
                deleted = await client.delete(*keys)
                logger.info(f"Cache DELETE PATTERN: {pattern} ({deleted} keys)")
                return deleted
            return 0
        except Exception as e:
            self._record_error()
            logger.warning(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    async def ping(self) -> bool:
        client = await self._client()
        if client is None:
            return False
        try:
            await client.ping()
            return True
        except Exception as e:
            self._record_error()
            logger.warning(f"Cache ping failed: {e}")
            return False
