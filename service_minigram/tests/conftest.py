"""
Shared fixtures for MiniGram service tests.
"""

import pytest

from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, InMemoryRedis, InMemoryStore
from service_minigram.app.cache.redis_cache import RedisCache


@pytest.fixture
def metrics():
    """Metrics collector with its own registry."""
    return MetricsCollector("minigram", "test-instance")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return InMemoryRedis(clock=clock)


@pytest.fixture
def cache(fake_redis, metrics):
    """RedisCache wired to the in-memory backend."""
    redis_cache = RedisCache("redis://test:6379/0", metrics, instance_id="test-instance", client=fake_redis)
    redis_cache.healthy = True
    return redis_cache


@pytest.fixture
def store():
    return InMemoryStore()
