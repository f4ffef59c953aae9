"""
Redis caching layer for MiniGram.

Every public operation is fail-open: transport or (de)serialization errors are
logged, counted, and reported to the caller as a miss or as ``False``. Nothing
in this module raises into a request handler except ``get_cache_stats``, which
backs an operator endpoint.
"""

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.errors import CacheUnavailableError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 300


class CacheStatus(str, Enum):
    """Outcome of a single cache lookup."""

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


@dataclass
class CacheResult:
    """Internal lookup result; ``get`` collapses ERROR into a miss."""

    status: CacheStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class RedisCache:
    """Cache-aside accessor over Redis with per-operation metrics."""

    def __init__(
        self,
        redis_url: str,
        metrics: Optional["MetricsCollector"] = None,
        *,
        instance_id: str = "unknown",
        default_ttl: int = DEFAULT_TTL,
        socket_timeout: float = 5.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.metrics = metrics
        self.instance_id = instance_id
        self.default_ttl = default_ttl
        self.socket_timeout = socket_timeout
        self.logger = get_logger("minigram.cache.redis")
        self.redis: Optional[redis.Redis] = client
        self.healthy = False

    async def start(self) -> bool:
        """Connect and PING. A failure leaves the cache unhealthy, never fatal."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=self.socket_timeout,
                    socket_timeout=self.socket_timeout,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            await self.redis.ping()
            self.healthy = True
            self.logger.info("Redis cache started", redis_url=self.redis_url)

        except Exception as e:
            self.healthy = False
            self.logger.error("Redis cache unavailable, serving from store of record", error=str(e))

        return self.healthy

    async def stop(self):
        """Close the Redis connection pool."""
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except Exception as e:
                self.logger.warning("Error closing Redis cache", error=str(e))
            self.redis = None
            self.healthy = False
            self.logger.info("Redis cache stopped")

    async def health_check(self) -> bool:
        """Check Redis health and refresh the ``healthy`` flag."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            self.healthy = True
        except Exception:
            self.healthy = False
        return self.healthy

    async def lookup(self, key: str, cache_type: str = "general") -> CacheResult:
        """Fetch and decode ``key``, distinguishing hit, miss and error."""
        with self._timed("get", cache_type):
            try:
                if self.redis is None:
                    raise CacheUnavailableError()

                raw = await self.redis.get(key)
                if raw is None:
                    self._mark_available()
                    self._count("cache_misses_total", cache_type)
                    return CacheResult(CacheStatus.MISS)

                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8")
                value = json.loads(raw)
                self._mark_available()
                self._count("cache_hits_total", cache_type)
                return CacheResult(CacheStatus.HIT, value)

            except Exception as e:
                self._record_failure("get", cache_type, key, e)
                self._count("cache_misses_total", cache_type)
                return CacheResult(CacheStatus.ERROR, error=str(e))

    async def get(self, key: str, cache_type: str = "general") -> Optional[Any]:
        """Return the cached value or None on miss or error."""
        result = await self.lookup(key, cache_type)
        return result.value if result.hit else None

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        cache_type: str = "general",
    ) -> Tuple[Any, bool]:
        """Cache-aside read: return ``(value, cache_hit)``.

        A hit never calls ``loader``. A miss calls it exactly once and caches a
        non-None result on a best-effort basis. Loader errors propagate.
        """
        cached = await self.get(key, cache_type)
        if cached is not None:
            return cached, True

        value = await loader()
        if value is not None:
            await self.set(key, value, ttl, cache_type)
        return value, False

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, cache_type: str = "general") -> bool:
        """Serialize ``value`` and write it with an expiry."""
        cache_ttl = self.default_ttl if ttl is None else ttl
        with self._timed("set", cache_type):
            try:
                if self.redis is None:
                    raise CacheUnavailableError()

                payload = json.dumps(value, default=_json_default)
                await self.redis.setex(key, cache_ttl, payload)
                self._mark_available()
                self.logger.debug("Cached value", key=key, ttl=cache_ttl, cache_type=cache_type)
                return True

            except Exception as e:
                self._record_failure("set", cache_type, key, e)
                return False

    async def delete(self, key: str, cache_type: str = "general") -> bool:
        """Delete a single key."""
        with self._timed("del", cache_type):
            try:
                if self.redis is None:
                    raise CacheUnavailableError()

                await self.redis.delete(key)
                self._mark_available()
                return True

            except Exception as e:
                self._record_failure("del", cache_type, key, e)
                return False

    async def invalidate_pattern(self, pattern: str, cache_type: str = "general") -> int:
        """Delete every key matching a glob pattern and return how many went.

        Uses ``KEYS``, which walks the whole keyspace.
        """
        with self._timed("invalidate", cache_type):
            try:
                if self.redis is None:
                    raise CacheUnavailableError()

                keys = await self.redis.keys(pattern)
                if not keys:
                    return 0

                removed = await self.redis.delete(*keys)
                self._mark_available()
                self.logger.info("Invalidated cache pattern", pattern=pattern, keys_count=removed)
                return int(removed)

            except Exception as e:
                self._record_failure("invalidate", cache_type, pattern, e)
                return 0

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get Redis memory and keyspace statistics."""
        if self.redis is None:
            raise CacheUnavailableError()

        try:
            memory = await self.redis.info("memory")
            stats = await self.redis.info("stats")
            total_keys = await self.redis.dbsize()
        except Exception as e:
            self.logger.error("Error getting cache stats", error=str(e))
            raise CacheUnavailableError("Failed to get cache stats", {"reason": str(e)})

        return {
            "cache_healthy": self.healthy,
            "instance": self.instance_id,
            "used_memory": memory.get("used_memory_human"),
            "keyspace_hits": stats.get("keyspace_hits"),
            "keyspace_misses": stats.get("keyspace_misses"),
            "hit_rate": self._calculate_hit_rate(stats),
            "total_keys": total_keys,
        }

    def _calculate_hit_rate(self, info: Dict[str, Any]) -> float:
        """Calculate cache hit rate."""
        hits = info.get("keyspace_hits", 0) or 0
        misses = info.get("keyspace_misses", 0) or 0
        total = hits + misses

        if total == 0:
            return 0.0

        return hits / total

    def _mark_available(self):
        if not self.healthy:
            self.logger.info("Redis cache reachable again")
        self.healthy = True

    def _record_failure(self, operation: str, cache_type: str, key: str, exc: Exception):
        if isinstance(exc, (RedisConnectionError, RedisTimeoutError, CacheUnavailableError)):
            self.healthy = False
        self.logger.error(
            "Cache operation failed",
            operation=operation,
            cache_type=cache_type,
            key=key,
            error=str(exc),
        )
        self._count("cache_errors_total", cache_type, operation=operation)

    def _count(self, metric_name: str, cache_type: str, **labels):
        if not self.metrics:
            return
        try:
            self.metrics.increment_counter(metric_name, cache_type=cache_type, instance=self.instance_id, **labels)
        except Exception as exc:  # pragma: no cover - metrics failures should never break caching
            self.logger.debug("Failed to record cache metric", metric=metric_name, error=str(exc))

    @contextmanager
    def _timed(self, operation: str, cache_type: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "cache_operation_duration_seconds",
                    time.perf_counter() - start,
                    operation=operation,
                    cache_type=cache_type,
                    instance=self.instance_id,
                )
