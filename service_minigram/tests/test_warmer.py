"""
Unit tests for the MiniGram cache warmer.
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from shared.test_helpers import FailingRedis, InMemoryStore, TestDataFactory
from service_minigram.app.cache.redis_cache import RedisCache
from service_minigram.app.cache.warmer import CacheWarmer


async def _seed(store: InMemoryStore, users: int = 2, posts: int = 1):
    for test_user in TestDataFactory.create_test_users()[:users]:
        await store.create_user(test_user.username, test_user.email)
    for n in range(posts):
        await store.create_post(1, f"post {n}")


class TestCacheWarmer:
    """Test cases for CacheWarmer."""

    @pytest.fixture
    def warmer(self, cache, store, metrics):
        return CacheWarmer(cache, store, metrics=metrics, instance_id="test-instance")

    @pytest.mark.asyncio
    async def test_warm_populates_users_posts_and_stats(self, warmer, store, fake_redis):
        """Two users and one post give exactly two user keys, one post key and the stats key."""
        await _seed(store, users=2, posts=1)

        summary = await warmer.warm()

        assert summary == {"users_warmed": 2, "posts_warmed": 1, "stats_cached": True, "errors": []}
        keys = sorted(await fake_redis.keys("*"))
        assert keys == ["post:1", "system:stats", "user:1", "user:2"]

    @pytest.mark.asyncio
    async def test_warm_uses_policy_ttls(self, warmer, store, fake_redis):
        await _seed(store, users=1, posts=1)

        await warmer.warm()

        assert fake_redis.ttl_of("user:1") == 900
        assert fake_redis.ttl_of("post:1") == 600
        assert fake_redis.ttl_of("system:stats") == 60

    @pytest.mark.asyncio
    async def test_warmed_entries_match_store(self, warmer, cache, store):
        await _seed(store, users=1, posts=1)

        await warmer.warm()

        assert await cache.get("user:1", "user") == await store.get_user(1)
        cached_post = await cache.get("post:1", "post")
        assert cached_post["username"] == "alice"
        stats = await cache.get("system:stats", "system")
        assert stats["total_users"] == 1
        assert stats["total_posts"] == 1
        assert stats["instance"] == "test-instance"
        assert "timestamp" in stats

    @pytest.mark.asyncio
    async def test_limits_are_passed_to_store(self, cache, metrics):
        store = AsyncMock()
        store.recent_users.return_value = []
        store.recent_posts.return_value = []
        store.system_stats.return_value = {"total_users": 0, "total_posts": 0, "recent_posts": 0}
        warmer = CacheWarmer(cache, store, metrics=metrics, user_limit=7, post_limit=3)

        await warmer.warm()

        store.recent_users.assert_awaited_once_with(7)
        store.recent_posts.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_failed_user_query_does_not_abort_warming(self, warmer, store):
        await _seed(store, users=1, posts=1)

        with patch.object(store, "recent_users", new=AsyncMock(side_effect=RuntimeError("db timeout"))):
            summary = await warmer.warm()

        assert summary["users_warmed"] == 0
        assert summary["posts_warmed"] == 1
        assert summary["stats_cached"] is True
        assert summary["errors"] == ["user: db timeout"]

    @pytest.mark.asyncio
    async def test_failed_stats_query_keeps_entity_warming(self, warmer, store):
        await _seed(store, users=2, posts=1)

        with patch.object(store, "system_stats", new=AsyncMock(side_effect=RuntimeError("boom"))):
            summary = await warmer.warm()

        assert summary["users_warmed"] == 2
        assert summary["posts_warmed"] == 1
        assert summary["stats_cached"] is False
        assert len(summary["errors"]) == 1

    @pytest.mark.asyncio
    async def test_failed_stats_write_is_reported(self, warmer, store, cache):
        await _seed(store, users=1, posts=1)
        real_set = cache.set

        async def set_except_stats(key, value, ttl=None, cache_type="general"):
            if key == "system:stats":
                return False
            return await real_set(key, value, ttl, cache_type)

        with patch.object(cache, "set", new=set_except_stats):
            summary = await warmer.warm()

        assert summary["users_warmed"] == 1
        assert summary["posts_warmed"] == 1
        assert summary["stats_cached"] is False
        assert summary["errors"] == ["system: failed to cache stats"]

    @pytest.mark.asyncio
    async def test_cache_outage_yields_partial_summary(self, store, metrics):
        await _seed(store, users=2, posts=1)
        failing = RedisCache("redis://down", metrics, instance_id="test-instance", client=FailingRedis())
        warmer = CacheWarmer(failing, store, metrics=metrics, instance_id="test-instance")

        summary = await warmer.warm()

        assert summary["users_warmed"] == 0
        assert summary["posts_warmed"] == 0
        assert summary["stats_cached"] is False
        assert len(summary["errors"]) == 4
        assert summary["errors"][-1] == "system: failed to cache stats"
        assert metrics.sample("cache_warm_total", result="partial", instance="test-instance") == 1.0

    @pytest.mark.asyncio
    async def test_warm_records_metrics(self, warmer, store, metrics):
        await _seed(store)

        await warmer.warm()

        assert metrics.sample("cache_warm_total", result="success", instance="test-instance") == 1.0
        assert metrics.sample("cache_warm_duration_seconds_count", instance="test-instance") == 1.0


class TestScheduledWarm:
    """Test cases for the delayed startup warm."""

    @pytest.mark.asyncio
    async def test_schedule_runs_after_delay(self, cache, store, metrics):
        await _seed(store)
        warmer = CacheWarmer(cache, store, metrics=metrics)

        task = warmer.schedule(0)
        summary = await task

        assert summary["users_warmed"] == 2

    @pytest.mark.asyncio
    async def test_schedule_skips_when_cache_unreachable(self, store, metrics):
        failing = RedisCache("redis://down", metrics, client=FailingRedis())
        warmer = CacheWarmer(failing, store, metrics=metrics)

        assert await warmer.schedule(0) is None
        assert "recent_users" not in store.calls

    @pytest.mark.asyncio
    async def test_cancel_pending_warm(self, cache, store, metrics):
        warmer = CacheWarmer(cache, store, metrics=metrics)
        task = warmer.schedule(60)

        await warmer.cancel()

        assert task.cancelled()
        assert "recent_users" not in store.calls

    @pytest.mark.asyncio
    async def test_cancel_without_schedule_is_noop(self, cache, store):
        warmer = CacheWarmer(cache, store)

        await warmer.cancel()
        await asyncio.sleep(0)
