"""
Load testing for the MiniGram cache layer using Locust.

Drives the read-heavy feed and profile endpoints alongside a trickle of writes
and reports the observed cache hit ratio when the run stops:

    locust -f tests/performance/locustfile.py --host http://localhost:3000
"""

import random
import uuid
from typing import Dict

from locust import HttpUser, TaskSet, task, between, events


CACHE_STATS: Dict[str, int] = {"hits": 0, "misses": 0}

FEED_PAGES = [1, 1, 1, 2, 3]
FEED_LIMITS = [10, 20]


def _track(response) -> None:
    """Count cache hits reported by read endpoints."""
    try:
        data = response.json()
    except ValueError:
        return
    if data.get("cache_hit"):
        CACHE_STATS["hits"] += 1
    else:
        CACHE_STATS["misses"] += 1


class MiniGramReadTasks(TaskSet):
    """Cacheable read traffic."""

    @task(5)
    def recent_posts(self):
        params = {"page": random.choice(FEED_PAGES), "limit": random.choice(FEED_LIMITS)}
        with self.client.get("/api/posts", params=params, name="/api/posts", catch_response=True) as response:
            if response.status_code == 200:
                _track(response)
                response.success()
            else:
                response.failure(f"Unexpected status {response.status_code}")

    @task(3)
    def user_profile(self):
        user_id = random.randint(1, self.user.known_users)
        with self.client.get(f"/api/users/{user_id}", name="/api/users/[id]", catch_response=True) as response:
            if response.status_code == 200:
                _track(response)
                response.success()
            elif response.status_code == 404:
                response.success()
            else:
                response.failure(f"Unexpected status {response.status_code}")

    @task(2)
    def user_posts(self):
        user_id = random.randint(1, self.user.known_users)
        with self.client.get(f"/api/users/{user_id}/posts", name="/api/users/[id]/posts", catch_response=True) as response:
            if response.status_code == 200:
                _track(response)
                response.success()
            else:
                response.failure(f"Unexpected status {response.status_code}")


class MiniGramWriteTasks(TaskSet):
    """Writes that populate and invalidate cache entries."""

    @task(1)
    def register(self):
        suffix = uuid.uuid4().hex[:12]
        payload = {"username": f"load_{suffix}", "email": f"load_{suffix}@minigram.dev"}
        with self.client.post("/api/register", json=payload, catch_response=True) as response:
            if response.status_code in (201, 409):
                response.success()
            else:
                response.failure(f"Unexpected status {response.status_code}")

    @task(2)
    def create_post(self):
        payload = {"user_id": random.randint(1, self.user.known_users), "content": "load test post"}
        with self.client.post("/api/posts", json=payload, catch_response=True) as response:
            if response.status_code in (201, 404):
                response.success()
            else:
                response.failure(f"Unexpected status {response.status_code}")


class MiniGramUser(HttpUser):
    """Mostly-read MiniGram client."""

    wait_time = between(0.1, 0.5)
    tasks = {MiniGramReadTasks: 9, MiniGramWriteTasks: 1}
    known_users = 100

    def on_start(self):
        self.client.post("/api/cache/warm")


@events.test_stop.add_listener
def report_hit_ratio(environment, **kwargs):
    total = CACHE_STATS["hits"] + CACHE_STATS["misses"]
    ratio = CACHE_STATS["hits"] / total if total else 0.0
    print(f"Cache hits: {CACHE_STATS['hits']}, misses: {CACHE_STATS['misses']}, hit ratio: {ratio:.2%}")
