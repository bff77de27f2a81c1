"""
Decision cache

Two tiers in front of the resolver:
- Tier 1: in-process LRU with per-entry TTL (fastest, bounded)
- Tier 2: Redis via CacheManager (shared, optional)

Reads go L1 -> L2 and promote L2 hits into L1. Writes go to both tiers.

Every invalidation bumps a per-user generation counter. A resolver takes a
snapshot of the generation before it reads the store and hands it back to
put(); if an invalidation happened in between the put is dropped, so a
decision computed before a mutation is never cached after it. L2 entries
also carry the wall-clock time they were stored, and entries older than the
last local invalidation of their user are ignored, which covers a failed
Redis delete.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from authz.config import settings
from authz.utils.cache import CacheManager
from authz.utils.metrics import CACHE_L1_ENTRIES, record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    expirations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class LRUCache:
    """
    Bounded in-memory LRU cache with per-entry TTL.

    Entries may be tagged with a group when they are set. A side index maps
    each group to its keys, so delete_group() touches only that group's
    entries. The lock is held for O(1) work per entry.
    """

    def __init__(self, max_size: int = 10000, timer: Callable[[], float] = time.monotonic):
        self._cache: OrderedDict[str, tuple[Any, float, Hashable | None]] = OrderedDict()
        self._groups: dict[Hashable, set[str]] = {}
        self._max_size = max_size
        self._timer = timer
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> Any | None:
        """Get value and move to end (most recently used)."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats.misses += 1
                return None
            value, expires_at, _ = entry
            if self._timer() >= expires_at:
                self._remove(key)
                self._stats.expirations += 1
                self._stats.misses += 1
                return None
            self._cache.move_to_end(key)
            self._stats.hits += 1
            return value

    def set(self, key: str, value: Any, ttl: float, group: Hashable | None = None) -> None:
        with self._lock:
            if key in self._cache:
                self._remove(key)
            self._cache[key] = (value, self._timer() + ttl, group)
            if group is not None:
                self._groups.setdefault(group, set()).add(key)

            # Evict oldest if over capacity
            while len(self._cache) > self._max_size:
                self._remove(next(iter(self._cache)))
                self._stats.evictions += 1

            self._stats.sets += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                self._remove(key)
                self._stats.deletes += 1
                return True
            return False

    def delete_group(self, group: Hashable) -> int:
        """Drop every entry set with *group*. Returns how many were removed."""
        with self._lock:
            keys = self._groups.pop(group, set())
            for key in keys:
                del self._cache[key]
            self._stats.deletes += len(keys)
            return len(keys)

    def clear(self) -> int:
        with self._lock:
            removed = len(self._cache)
            self._cache.clear()
            self._groups.clear()
            return removed

    def _remove(self, key: str) -> None:
        """Unlink *key* from the cache and its group. Caller holds the lock."""
        _, _, group = self._cache.pop(key)
        if group is None:
            return
        keys = self._groups.get(group)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._groups[group]

    def get_stats(self) -> dict:
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "sets": self._stats.sets,
            "deletes": self._stats.deletes,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
            "hit_rate": round(self._stats.hit_rate, 4),
        }


class DecisionCache:
    """Two-tier cache of authorization decisions keyed by user, action and resource."""

    def __init__(
        self,
        l2: CacheManager | None = None,
        *,
        max_entries: int | None = None,
        prefix: str | None = None,
        high_water_ratio: float | None = None,
        error_window_seconds: int | None = None,
        timer: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._l1 = LRUCache(max_size=max_entries or settings.rbac_l1_cache_max_entries, timer=timer)
        self._l2 = l2 or CacheManager(redis_url=None)
        self._prefix = prefix if prefix is not None else settings.rbac_cache_prefix
        self._high_water_ratio = high_water_ratio or settings.cache_high_water_ratio
        self._error_window = error_window_seconds or settings.cache_error_window_seconds
        self._wall_clock = wall_clock

        self._lock = threading.Lock()
        self._global_generation = 0
        self._user_generations: dict[UUID, int] = {}
        self._global_fence = 0.0
        self._user_fences: dict[UUID, float] = {}

        self._l2_stats = CacheStats()
        self._l2_operations = 0
        self._stale_puts_dropped = 0
        self._invalidations = 0

    # ── Keys & generations ───────────────────────────────────────────────────

    def key_for(self, user_id: UUID, action: str, resource_type: str, resource_id: UUID) -> str:
        return f"{self._prefix}{user_id}:{action}:{resource_type}:{resource_id}"

    def user_prefix(self, user_id: UUID) -> str:
        return f"{self._prefix}{user_id}:"

    def snapshot(self, user_id: UUID) -> tuple[int, int]:
        with self._lock:
            return self._global_generation, self._user_generations.get(user_id, 0)

    def _current(self, user_id: UUID) -> tuple[int, int]:
        return self._global_generation, self._user_generations.get(user_id, 0)

    def _fence(self, user_id: UUID) -> float:
        return max(self._global_fence, self._user_fences.get(user_id, 0.0))

    # ── Read / write ─────────────────────────────────────────────────────────

    async def get(self, key: str, user_id: UUID) -> dict | None:
        """Look a decision up in L1, then L2 (promoting L2 hits into L1)."""
        value = self._l1.get(key)
        if value is not None:
            record_cache_hit("l1")
            return value
        record_cache_miss("l1")

        if not self._l2.configured:
            return None

        snapshot = self.snapshot(user_id)
        self._l2_operations += 1
        entry = await self._l2.get(key)
        now = self._wall_clock()
        if (
            not isinstance(entry, dict)
            or "decision" not in entry
            or entry.get("stored_at", 0) <= self._fence(user_id)
            or entry.get("expires_at", 0) <= now
        ):
            self._l2_stats.misses += 1
            return None

        self._l2_stats.hits += 1
        remaining = entry["expires_at"] - now
        with self._lock:
            if self._current(user_id) == snapshot:
                self._l1.set(key, entry["decision"], remaining, group=user_id)
        return entry["decision"]

    async def put(self, key: str, user_id: UUID, payload: dict, ttl: float, snapshot: tuple[int, int]) -> bool:
        """
        Store a decision in both tiers unless the user was invalidated since
        *snapshot* was taken. Returns False when the write was dropped.
        """
        with self._lock:
            if self._current(user_id) != snapshot:
                self._stale_puts_dropped += 1
                logger.debug(f"Dropping stale cache write for {key}")
                return False
            self._l1.set(key, payload, ttl, group=user_id)
        CACHE_L1_ENTRIES.set(len(self._l1))

        if not self._l2.configured:
            return True

        stored_at = self._wall_clock()
        self._l2_operations += 1
        if await self._l2.set(key, {"decision": payload, "stored_at": stored_at, "expires_at": stored_at + ttl}, math.ceil(ttl)):
            self._l2_stats.sets += 1

        if self.snapshot(user_id) != snapshot:
            # Invalidated while the L2 write was in flight
            await self._l2.delete(key)
            self._l1.delete(key)
            self._stale_puts_dropped += 1
            return False
        return True

    # ── Invalidation ─────────────────────────────────────────────────────────

    async def invalidate_user(self, user_id: UUID) -> int:
        """Evict every decision whose user component equals *user_id*, in both tiers."""
        prefix = self.user_prefix(user_id)
        with self._lock:
            self._user_generations[user_id] = self._user_generations.get(user_id, 0) + 1
            self._user_fences[user_id] = self._wall_clock()
            removed = self._l1.delete_group(user_id)
            self._invalidations += 1

        removed += await self._l2.delete_pattern(f"{prefix}*")
        CACHE_L1_ENTRIES.set(len(self._l1))
        return removed

    async def clear(self) -> int:
        """Evict everything in both tiers."""
        with self._lock:
            self._global_generation += 1
            self._user_generations.clear()
            self._global_fence = self._wall_clock()
            self._user_fences.clear()
            removed = self._l1.clear()
            self._invalidations += 1

        removed += await self._l2.delete_pattern(f"{self._prefix}*")
        CACHE_L1_ENTRIES.set(0)
        logger.info(f"Decision cache cleared ({removed} entries)")
        return removed

    # ── Introspection ────────────────────────────────────────────────────────

    def hit_rate(self) -> dict[str, float]:
        l1 = self._l1.get_stats()
        l1_lookups = l1["hits"] + l1["misses"]
        l2_lookups = self._l2_stats.hits + self._l2_stats.misses
        return {
            "l1": l1["hits"] / l1_lookups if l1_lookups else 0.0,
            "l2": self._l2_stats.hits / l2_lookups if l2_lookups else 0.0,
            "overall": (l1["hits"] + self._l2_stats.hits) / l1_lookups if l1_lookups else 0.0,
        }

    def error_rate(self) -> float:
        if not self._l2_operations:
            return 0.0
        return self._l2.errors / self._l2_operations

    def metrics(self) -> dict:
        return {
            "l1": self._l1.get_stats(),
            "l2": {
                "enabled": self._l2.configured,
                "connected": self._l2.connected,
                "hits": self._l2_stats.hits,
                "misses": self._l2_stats.misses,
                "sets": self._l2_stats.sets,
                "operations": self._l2_operations,
                "errors": self._l2.errors,
            },
            "invalidations": self._invalidations,
            "stale_puts_dropped": self._stale_puts_dropped,
            "hit_rate": self.hit_rate(),
        }

    async def health(self) -> dict:
        """
        healthy: L1 below its high-water mark and L2 healthy or disabled.
        degraded: anything else. L2 failures are always reported here.
        """
        size = len(self._l1)
        high_water_mark = int(self._l1.max_size * self._high_water_ratio)
        l1_status = "healthy" if size < high_water_mark else "degraded"

        if not self._l2.configured:
            l2_status = "disabled"
        else:
            reachable = await self._l2.ping()
            last_error = self._l2.last_error_at
            recent_error = last_error is not None and time.monotonic() - last_error < self._error_window
            if not reachable:
                l2_status = "unhealthy"
            elif recent_error:
                l2_status = "degraded"
            else:
                l2_status = "healthy"

        healthy = l1_status == "healthy" and l2_status in ("healthy", "disabled")
        return {
            "status": "healthy" if healthy else "degraded",
            "l1": {
                "status": l1_status,
                "size": size,
                "max_size": self._l1.max_size,
                "high_water_mark": high_water_mark,
            },
            "l2": {
                "status": l2_status,
                "errors": self._l2.errors,
            },
            "hit_rate": self.hit_rate(),
            "error_rate": round(self.error_rate(), 4),
        }
