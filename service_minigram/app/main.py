"""
MiniGram service: users and posts behind a Redis cache.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from fastapi import Query

from shared.base_service import BaseService
from shared.errors import CacheUnavailableError, NotFoundError, ServiceError, ValidationError, ConflictError

from .cache.keys import (
    post_key,
    recent_posts_key,
    recent_posts_pattern,
    user_email_key,
    user_key,
    user_posts_key,
    user_posts_pattern,
)
from .cache.redis_cache import RedisCache
from .cache.warmer import CacheWarmer
from .models import CacheInvalidateRequest, PostCreateRequest, RegisterRequest
from .persistence.postgres import PostgreSQLPersistence


DEFAULT_PORT = 3000
PASSWORD_ITERATIONS = 100_000


def hash_password(password: str) -> str:
    """PBKDF2-SHA256 hash in ``algorithm$iterations$salt$digest`` form."""
    salt = os.urandom(16)
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=PASSWORD_ITERATIONS,
    )
    digest = kdf.derive(password.encode("utf-8"))
    return f"pbkdf2_sha256${PASSWORD_ITERATIONS}${salt.hex()}${digest.hex()}"


class MiniGramService(BaseService):
    """MiniGram service implementation."""

    def __init__(
        self,
        *,
        cache: Optional[RedisCache] = None,
        store: Optional[PostgreSQLPersistence] = None,
        port: Optional[int] = None,
        **config_overrides,
    ):
        super().__init__("minigram", port or int(os.getenv("PORT", DEFAULT_PORT)), **config_overrides)

        self.store = store or PostgreSQLPersistence(
            self.config.postgres_dsn,
            self.metrics,
            instance_id=self.instance_id,
            min_size=self.config.db_pool_min_size,
            max_size=self.config.db_pool_max_size,
            command_timeout=self.config.db_command_timeout,
        )
        self.cache = cache or RedisCache(
            self.config.redis_url,
            self.metrics,
            instance_id=self.instance_id,
            default_ttl=self.config.cache_default_ttl,
            socket_timeout=self.config.redis_socket_timeout,
        )
        self.warmer = CacheWarmer(
            self.cache,
            self.store,
            metrics=self.metrics,
            instance_id=self.instance_id,
            user_limit=self.config.cache_warm_user_limit,
            post_limit=self.config.cache_warm_post_limit,
            user_ttl=self.config.cache_user_ttl,
            post_ttl=self.config.cache_post_ttl,
            stats_ttl=self.config.cache_stats_ttl,
        )

        self._setup_minigram_routes()

    def _setup_minigram_routes(self):
        """Set up MiniGram-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "minigram",
                "message": "MiniGram - Stage 4 (Redis cache)",
                "version": "1.0.0",
                "instance": self.instance_id,
                "capabilities": ["users", "posts", "caching", "cache_warming"]
            }

        @self.app.get("/api/instance")
        async def instance_info():
            """Identify the instance that served the request."""
            return {
                "instance": self.instance_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "cache_enabled": self.cache.healthy,
                "uptime": self._get_uptime()
            }

        @self.app.post("/api/register", status_code=201)
        async def register(request: RegisterRequest):
            """Register a user, then cache it by id and by email."""
            if not request.username or not request.email:
                raise ValidationError("Username and email are required")

            # Fast path only; the unique constraint below is authoritative.
            if await self.cache.get(user_email_key(request.email), "user") is not None:
                raise ConflictError("Email already exists")

            password_hash = hash_password(request.password) if request.password else None
            try:
                user = await self.store.create_user(request.username, request.email, password_hash)
            except ServiceError as e:
                raise ServiceError("Registration failed") from e

            ttl = self.config.cache_user_ttl
            await self.cache.set(user_key(user["id"]), user, ttl, "user")
            await self.cache.set(user_email_key(user["email"]), user, ttl, "user")

            return {
                "message": "User registered successfully",
                "user": {"id": user["id"], "username": user["username"], "email": user["email"]},
                "cached": self.cache.healthy
            }

        @self.app.post("/api/posts", status_code=201)
        async def create_post(request: PostCreateRequest):
            """Create a post, cache it and drop the feeds it makes stale."""
            if not request.user_id or not request.content:
                raise ValidationError("User ID and content are required")

            try:
                post = await self.store.create_post(request.user_id, request.content, request.image_url)
            except NotFoundError as e:
                raise NotFoundError("User not found", {"user_id": request.user_id}) from e
            except ServiceError as e:
                raise ServiceError("Failed to create post") from e

            await self.cache.set(post_key(post["id"]), post, self.config.cache_post_ttl, "post")
            await self.cache.invalidate_pattern(user_posts_pattern(request.user_id), "post")
            await self.cache.invalidate_pattern(recent_posts_pattern(), "post")

            return {
                "message": "Post created successfully",
                "post": post,
                "cached": self.cache.healthy
            }

        @self.app.get("/api/posts")
        async def list_posts(
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(10, ge=1, le=100, description="Items per page")
        ):
            """Recent posts across all users."""
            try:
                posts, cache_hit = await self.cache.get_or_load(
                    recent_posts_key(page, limit),
                    lambda: self.store.recent_posts(limit, (page - 1) * limit),
                    self.config.cache_feed_ttl,
                    "post",
                )
            except ServiceError as e:
                raise ServiceError("Failed to fetch posts") from e

            return {
                "posts": posts,
                "page": page,
                "limit": limit,
                "cached": cache_hit or self.cache.healthy,
                "cache_hit": cache_hit
            }

        @self.app.get("/api/users/{user_id}")
        async def get_user(user_id: int):
            """Single user by id."""
            try:
                user, cache_hit = await self.cache.get_or_load(
                    user_key(user_id),
                    lambda: self.store.get_user(user_id),
                    self.config.cache_user_ttl,
                    "user",
                )
            except ServiceError as e:
                raise ServiceError("Failed to fetch user") from e

            if user is None:
                raise NotFoundError("User not found", {"user_id": user_id})

            return {
                "user": user,
                "cached": cache_hit or self.cache.healthy,
                "cache_hit": cache_hit
            }

        @self.app.get("/api/users/{user_id}/posts")
        async def list_user_posts(
            user_id: int,
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(10, ge=1, le=100, description="Items per page")
        ):
            """Recent posts of one user."""
            try:
                posts, cache_hit = await self.cache.get_or_load(
                    user_posts_key(user_id, page, limit),
                    lambda: self.store.user_posts(user_id, limit, (page - 1) * limit),
                    self.config.cache_feed_ttl,
                    "post",
                )
            except ServiceError as e:
                raise ServiceError("Failed to fetch posts") from e

            return {
                "user_id": user_id,
                "posts": posts,
                "page": page,
                "limit": limit,
                "cached": cache_hit or self.cache.healthy,
                "cache_hit": cache_hit
            }

        @self.app.post("/api/cache/invalidate")
        async def invalidate_cache(request: Optional[CacheInvalidateRequest] = None):
            """Drop every key matching a glob pattern."""
            await self._require_cache()

            pattern = (request.pattern if request else None) or "*"
            invalidated = await self.cache.invalidate_pattern(pattern)

            return {
                "message": "Cache invalidation completed",
                "pattern": pattern,
                "invalidated_keys": invalidated,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.post("/api/cache/warm")
        async def warm_cache():
            """Warm the cache on demand."""
            await self._require_cache()

            summary = await self.warmer.warm()

            return {
                "message": "Cache warming completed",
                **summary,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.get("/api/cache/stats")
        async def cache_stats():
            """Redis memory and keyspace statistics."""
            await self._require_cache()

            stats = await self.cache.get_cache_stats()
            stats["timestamp"] = datetime.now(timezone.utc).isoformat()
            return stats

    async def _require_cache(self):
        if not await self.cache.health_check():
            raise CacheUnavailableError()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check MiniGram service dependencies."""
        return {
            "redis": "ok" if await self.cache.health_check() else "error",
            "postgres": "ok" if await self.store.health_check() else "error",
        }

    def _health_details(self) -> Dict[str, Any]:
        return {"cache_healthy": self.cache.healthy}

    async def start(self):
        """Start MiniGram service components."""
        await self.store.start()
        await self.cache.start()

        if self.cache.healthy and self.config.cache_warm_on_startup:
            self.warmer.schedule(self.config.cache_warm_delay_seconds)

        self.logger.info(
            "MiniGram service started",
            port=self.port,
            instance=self.instance_id,
            cache_enabled=self.cache.healthy
        )

    async def stop(self):
        """Stop MiniGram service components."""
        await self.warmer.cancel()
        await self.cache.stop()
        await self.store.stop()

        self.logger.info("MiniGram service stopped")


def create_app(**kwargs):
    """Create MiniGram service application."""
    service = MiniGramService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = MiniGramService()
    service.run()
