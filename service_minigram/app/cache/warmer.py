"""
Cache warming for frequently accessed MiniGram data.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .keys import SYSTEM_STATS_KEY, post_key, user_key
from .redis_cache import RedisCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..persistence.postgres import PostgreSQLPersistence
    from shared.metrics import MetricsCollector


DEFAULT_WARM_USER_LIMIT = 100
DEFAULT_WARM_POST_LIMIT = 50
DEFAULT_USER_TTL = 900
DEFAULT_POST_TTL = 600
DEFAULT_STATS_TTL = 60
DEFAULT_WARM_DELAY = 5.0


class CacheWarmer:
    """Pre-load recent users, recent posts and system stats into the cache.

    Each step runs even when an earlier one failed; a partially warmed cache
    is an accepted outcome.
    """

    def __init__(
        self,
        cache: RedisCache,
        store: "PostgreSQLPersistence",
        *,
        metrics: Optional["MetricsCollector"] = None,
        instance_id: str = "unknown",
        user_limit: int = DEFAULT_WARM_USER_LIMIT,
        post_limit: int = DEFAULT_WARM_POST_LIMIT,
        user_ttl: int = DEFAULT_USER_TTL,
        post_ttl: int = DEFAULT_POST_TTL,
        stats_ttl: int = DEFAULT_STATS_TTL,
    ):
        self.cache = cache
        self.store = store
        self.metrics = metrics
        self.instance_id = instance_id
        self.user_limit = user_limit
        self.post_limit = post_limit
        self.user_ttl = user_ttl
        self.post_ttl = post_ttl
        self.stats_ttl = stats_ttl
        self.logger = get_logger("minigram.cache.warmer")
        self._scheduled: Optional[asyncio.Task] = None

    async def warm(self) -> Dict[str, Any]:
        """Warm the cache and return a summary of what was written."""
        self.logger.info("Starting cache warming")
        start = time.perf_counter()
        summary: Dict[str, Any] = {
            "users_warmed": 0,
            "posts_warmed": 0,
            "stats_cached": False,
            "errors": [],
        }

        summary["users_warmed"] = await self._warm_entities(
            "user", lambda: self.store.recent_users(self.user_limit), user_key, self.user_ttl, summary["errors"]
        )
        summary["posts_warmed"] = await self._warm_entities(
            "post", lambda: self.store.recent_posts(self.post_limit), post_key, self.post_ttl, summary["errors"]
        )

        try:
            stats = await self.get_system_stats()
            summary["stats_cached"] = await self.cache.set(SYSTEM_STATS_KEY, stats, self.stats_ttl, "system")
            if not summary["stats_cached"]:
                summary["errors"].append("system: failed to cache stats")
        except Exception as e:
            self.logger.error("Failed to warm system stats", error=str(e))
            summary["errors"].append(f"system: {e}")

        self._record_warm_metrics(summary, time.perf_counter() - start)
        self.logger.info(
            "Cache warming completed",
            users=summary["users_warmed"],
            posts=summary["posts_warmed"],
            stats_cached=summary["stats_cached"],
            errors=len(summary["errors"]),
        )
        return summary

    async def _warm_entities(self, cache_type, fetch, make_key, ttl: int, errors: List[str]) -> int:
        try:
            rows = await fetch()
        except Exception as e:
            self.logger.error("Failed to load rows for cache warming", cache_type=cache_type, error=str(e))
            errors.append(f"{cache_type}: {e}")
            return 0

        warmed = 0
        for row in rows:
            if await self.cache.set(make_key(row["id"]), row, ttl, cache_type):
                warmed += 1
            else:
                errors.append(f"{cache_type}: failed to cache id {row['id']}")
        return warmed

    async def get_system_stats(self) -> Dict[str, Any]:
        """Aggregate counts from the store of record, stamped with time and instance."""
        stats = await self.store.system_stats()
        stats["timestamp"] = datetime.now(timezone.utc).isoformat()
        stats["instance"] = self.instance_id
        return stats

    def schedule(self, delay: float = DEFAULT_WARM_DELAY) -> asyncio.Task:
        """Run ``warm`` once after ``delay`` seconds if the cache is reachable."""
        self._scheduled = asyncio.create_task(self._delayed_warm(delay))
        return self._scheduled

    async def _delayed_warm(self, delay: float):
        await asyncio.sleep(delay)
        if not await self.cache.health_check():
            self.logger.warning("Skipping startup cache warm, cache unavailable")
            return None
        return await self.warm()

    async def cancel(self):
        """Cancel a pending scheduled warm, if any."""
        task, self._scheduled = self._scheduled, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _record_warm_metrics(self, summary: Dict[str, Any], duration: float):
        if not self.metrics:
            return

        result = "partial" if summary["errors"] else "success"
        try:
            self.metrics.increment_counter("cache_warm_total", result=result, instance=self.instance_id)
            self.metrics.observe_histogram("cache_warm_duration_seconds", duration, instance=self.instance_id)
        except Exception as exc:  # pragma: no cover - metrics failures should never break warming
            self.logger.debug("Failed to record warm metrics", error=str(exc))
