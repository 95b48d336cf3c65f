"""
cache.py — Response cache for successful itinerary generations.

Entries are keyed by a fingerprint of the normalised request fields, expire
after a TTL and are evicted oldest-first once the cache holds max_size
entries. Expired entries are dropped lazily on lookup and by cleanup(),
which the maintenance loop calls every hour.

Storage
-------
With a Redis client the entries live under 'gencache:<key>' (SETEX, so
Redis enforces the TTL) and a sorted set 'gencache:index' keeps capture
times for size-bounded eviction. Any Redis error falls back to the
in-memory dict for that call.

Only requests that are likely to be repeated are cached: see is_cacheable().
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass

from redis import RedisError

from schemas import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)

MIN_CACHEABLE_BUDGET = 100
MAX_CACHEABLE_ADULTS = 10
MAX_CACHEABLE_CHILDREN = 8
MIN_CACHEABLE_DAYS = 2

_KEY_PREFIX = 'gencache:'
_INDEX_KEY  = 'gencache:index'


def cache_key(request: GenerationRequest) -> str:
    raw = json.dumps(request.fingerprint_fields(), sort_keys=True)
    return hashlib.md5(raw.encode()).hexdigest()


def is_cacheable(request: GenerationRequest) -> bool:
    """Skip idiosyncratic requests whose reuse probability is near zero."""
    if request.budget_total is not None and request.budget_total < MIN_CACHEABLE_BUDGET:
        return False
    if request.adults_count > MAX_CACHEABLE_ADULTS:
        return False
    if request.children_count > MAX_CACHEABLE_CHILDREN:
        return False
    return request.trip_days >= MIN_CACHEABLE_DAYS


@dataclass
class CacheEntry:
    result:    GenerationResult
    timestamp: float
    ttl:       float

    def is_valid(self, now: float) -> bool:
        return now <= self.timestamp + self.ttl


class GenerationCache:
    def __init__(self, max_size: int = 200, default_ttl: float = 12 * 3600,
                 redis_client=None, clock=time.time):
        self.max_size    = max_size
        self.default_ttl = default_ttl
        self._redis      = redis_client
        self._clock      = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock       = threading.Lock()
        self._hits       = 0
        self._misses     = 0

    # ── Public API ────────────────────────────────────────────────────────────

    def get(self, request: GenerationRequest) -> GenerationResult | None:
        """Return a copy of the cached result with processing_time_ms = 0, or None."""
        if not is_cacheable(request):
            return None

        key = cache_key(request)
        result = self._redis_get(key) if self._redis is not None else None
        if result is None:
            result = self._memory_get(key)

        with self._lock:
            if result is None:
                self._misses += 1
                return None
            self._hits += 1
        return result.model_copy(update={'processing_time_ms': 0})

    def set(self, request: GenerationRequest, result: GenerationResult,
            ttl: float | None = None) -> bool:
        """Store a successful result; returns False when nothing was cached."""
        if not result.success or not is_cacheable(request):
            return False

        key = cache_key(request)
        if ttl is None:
            ttl = self.default_ttl
        if ttl <= 0:
            return False
        if self._redis is not None and self._redis_set(key, result, ttl):
            return True
        self._memory_set(key, result, ttl)
        return True

    def cleanup(self) -> int:
        """Drop expired entries; returns how many were removed."""
        removed = 0
        if self._redis is not None:
            removed += self._redis_cleanup()

        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
            for k in expired:
                del self._entries[k]
        removed += len(expired)
        if removed:
            logger.info('Generation cache: cleaned %d expired entr%s',
                        removed, 'y' if removed == 1 else 'ies')
        return removed

    def clear(self) -> None:
        if self._redis is not None:
            try:
                keys = self._redis.zrange(_INDEX_KEY, 0, -1)
                if keys:
                    self._redis.delete(*[_KEY_PREFIX + k for k in keys])
                self._redis.delete(_INDEX_KEY)
            except RedisError as exc:
                logger.warning('Redis cache CLEAR error: %s', exc)
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict:
        with self._lock:
            hits, misses = self._hits, self._misses
            size = len(self._entries)
        if self._redis is not None:
            try:
                size += self._redis.zcard(_INDEX_KEY)
            except RedisError as exc:
                logger.warning('Redis cache ZCARD error: %s', exc)
        lookups = hits + misses
        return {
            'backend':        'redis' if self._redis is not None else 'memory',
            'size':           size,
            'max_size':       self.max_size,
            'default_ttl':    self.default_ttl,
            'total_hits':     hits,
            'total_requests': lookups,
            'hit_rate':       round(hits / lookups * 100, 2) if lookups else 0.0,
        }

    # ── In-memory store ───────────────────────────────────────────────────────

    def _memory_get(self, key: str) -> GenerationResult | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[key]
                return None
            return entry.result

    def _memory_set(self, key: str, result: GenerationResult, ttl: float) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest = min(self._entries, key=lambda k: self._entries[k].timestamp)
                del self._entries[oldest]
                logger.debug('Generation cache: evicted oldest entry %s', oldest)
            self._entries[key] = CacheEntry(result=result, timestamp=self._clock(), ttl=ttl)

    # ── Redis store ───────────────────────────────────────────────────────────

    def _redis_get(self, key: str) -> GenerationResult | None:
        try:
            raw = self._redis.get(_KEY_PREFIX + key)
            if raw is None:
                self._redis.zrem(_INDEX_KEY, key)
                return None
            return GenerationResult.model_validate_json(raw)
        except RedisError as exc:
            logger.warning('Redis cache GET error: %s', exc)
            return None

    def _redis_set(self, key: str, result: GenerationResult, ttl: float) -> bool:
        try:
            pipe = self._redis.pipeline()
            pipe.setex(_KEY_PREFIX + key, int(ttl), result.model_dump_json())
            pipe.zadd(_INDEX_KEY, {key: self._clock()})
            pipe.zcard(_INDEX_KEY)
            _, _, size = pipe.execute()

            excess = size - self.max_size
            if excess > 0:
                evicted = self._redis.zpopmin(_INDEX_KEY, excess)
                if evicted:
                    self._redis.delete(*[_KEY_PREFIX + k for k, _ in evicted])
            return True
        except RedisError as exc:
            logger.warning('Redis cache SET error: %s — falling back to memory', exc)
            return False

    def _redis_cleanup(self) -> int:
        try:
            removed = 0
            for k in self._redis.zrange(_INDEX_KEY, 0, -1):
                if not self._redis.exists(_KEY_PREFIX + k):
                    self._redis.zrem(_INDEX_KEY, k)
                    removed += 1
            return removed
        except RedisError as exc:
            logger.warning('Redis cache cleanup error: %s', exc)
            return 0
