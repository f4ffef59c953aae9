"""
MiniGram service package.

A photo-sharing CRUD backend with a Redis cache in front of PostgreSQL:

- app.main: API surface (users, posts, cache management, health).
- app.cache: Key namespacing, fail-open Redis accessor, cache warmer.
- app.persistence: PostgreSQL store of record.

Guidelines:
- The store of record is authoritative; the cache may be stale up to its TTL.
- Cache failures degrade to store reads, they never fail a request.
- Writes hit the store first, then populate and invalidate the cache.
"""
