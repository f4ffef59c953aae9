"""
PostgreSQL store of record for MiniGram users and posts.
"""

import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import asyncpg

from shared.errors import (
    AccessLayerException,
    ConflictError,
    NotFoundError,
    ServiceError,
    StoreUnavailableError,
)
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

USER_COLUMNS = "id, username, email, created_at"


class PostgreSQLPersistence:
    """asyncpg-backed access to the ``users`` and ``posts`` tables."""

    def __init__(
        self,
        dsn: str,
        metrics: Optional["MetricsCollector"] = None,
        *,
        instance_id: str = "unknown",
        min_size: int = 2,
        max_size: int = 20,
        command_timeout: float = 30,
        pool: Optional[asyncpg.Pool] = None,
    ):
        self.dsn = dsn
        self.metrics = metrics
        self.instance_id = instance_id
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("minigram.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Create the pool and tables. Failure here is fatal for the service."""
        try:
            if self.pool is None:
                self.pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=self.min_size,
                    max_size=self.max_size,
                    command_timeout=self.command_timeout
                )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started", max_size=self.max_size)

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError("Database initialization failed", {"reason": str(e)})

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id SERIAL PRIMARY KEY,
                    username VARCHAR(255) UNIQUE NOT NULL,
                    email VARCHAR(255) UNIQUE NOT NULL,
                    password_hash VARCHAR(255),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS posts (
                    id SERIAL PRIMARY KEY,
                    user_id INTEGER REFERENCES users(id),
                    content TEXT NOT NULL,
                    image_url VARCHAR(500),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_posts_user_id ON posts(user_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_posts_created_at ON posts(created_at DESC);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_users_username ON users(username);
            """)

    @asynccontextmanager
    async def _query(self, query_type: str):
        """Acquire a connection, time the query and translate driver errors."""
        if self.pool is None:
            raise StoreUnavailableError()

        start = time.perf_counter()
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except AccessLayerException:
            raise
        except Exception as e:
            raise self._translate_error(query_type, e) from e
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "db_query_duration_seconds",
                    time.perf_counter() - start,
                    query_type=query_type,
                    cached="false",
                    instance=self.instance_id,
                )

    def _translate_error(self, query_type: str, exc: Exception) -> AccessLayerException:
        sqlstate = getattr(exc, "sqlstate", None)
        if sqlstate == UNIQUE_VIOLATION:
            return ConflictError("Username or email already exists")
        if sqlstate == FOREIGN_KEY_VIOLATION:
            return NotFoundError("Referenced user not found")

        self.logger.error("Database query failed", query_type=query_type, error=str(exc))
        return ServiceError("Database query failed", {"query_type": query_type})

    async def create_user(self, username: str, email: str, password_hash: Optional[str] = None) -> Dict[str, Any]:
        """Insert a user and return the public columns."""
        async with self._query("insert") as conn:
            row = await conn.fetchrow(f"""
                INSERT INTO users (username, email, password_hash)
                VALUES ($1, $2, $3)
                RETURNING {USER_COLUMNS}
            """, username, email, password_hash)

        self.logger.info("User created", user_id=row["id"])
        return self._row_to_dict(row)

    async def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Load one user by id."""
        async with self._query("select") as conn:
            row = await conn.fetchrow(f"""
                SELECT {USER_COLUMNS} FROM users WHERE id = $1
            """, user_id)

        return self._row_to_dict(row) if row else None

    async def recent_users(self, limit: int) -> List[Dict[str, Any]]:
        """Most recently created users."""
        async with self._query("select") as conn:
            rows = await conn.fetch(f"""
                SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC LIMIT $1
            """, limit)

        return [self._row_to_dict(row) for row in rows]

    async def create_post(self, user_id: int, content: str, image_url: Optional[str] = None) -> Dict[str, Any]:
        """Insert a post and return it in the same shape the feeds use."""
        async with self._query("insert") as conn:
            row = await conn.fetchrow("""
                WITH inserted AS (
                    INSERT INTO posts (user_id, content, image_url)
                    VALUES ($1, $2, $3)
                    RETURNING *
                )
                SELECT i.*, u.username
                FROM inserted i
                JOIN users u ON i.user_id = u.id
            """, user_id, content, image_url)

        self.logger.info("Post created", post_id=row["id"], user_id=user_id)
        return self._row_to_dict(row)

    async def recent_posts(self, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest posts across all users, joined with the author's username."""
        async with self._query("select") as conn:
            rows = await conn.fetch("""
                SELECT p.*, u.username
                FROM posts p
                JOIN users u ON p.user_id = u.id
                ORDER BY p.created_at DESC
                LIMIT $1 OFFSET $2
            """, limit, offset)

        return [self._row_to_dict(row) for row in rows]

    async def user_posts(self, user_id: int, limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest posts of a single user."""
        async with self._query("select") as conn:
            rows = await conn.fetch("""
                SELECT p.*, u.username
                FROM posts p
                JOIN users u ON p.user_id = u.id
                WHERE p.user_id = $1
                ORDER BY p.created_at DESC
                LIMIT $2 OFFSET $3
            """, user_id, limit, offset)

        return [self._row_to_dict(row) for row in rows]

    async def system_stats(self) -> Dict[str, int]:
        """User and post totals plus posts created in the last hour."""
        async with self._query("aggregate") as conn:
            stats = await conn.fetchrow("""
                SELECT
                    (SELECT COUNT(*) FROM users) AS total_users,
                    (SELECT COUNT(*) FROM posts) AS total_posts,
                    (SELECT COUNT(*) FROM posts
                     WHERE created_at > NOW() - INTERVAL '1 hour') AS recent_posts
            """)

        return {
            "total_users": int(stats["total_users"]),
            "total_posts": int(stats["total_posts"]),
            "recent_posts": int(stats["recent_posts"]),
        }

    def _row_to_dict(self, row) -> Dict[str, Any]:
        """Convert a record to a JSON-ready dict; timestamps become ISO strings."""
        data = dict(row)
        data.pop("password_hash", None)
        for field, value in data.items():
            if isinstance(value, (datetime, date)):
                data[field] = value.isoformat()
        return data

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
