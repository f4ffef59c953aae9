"""
MiniGram caching package.

Cache-aside primitives over Redis: key construction, a fail-open accessor
with pattern invalidation, and a startup/on-demand cache warmer. Cache entries
are best-effort copies of the store of record and are never consulted for
uniqueness or referential checks.
"""

from .keys import make_key
from .redis_cache import CacheResult, CacheStatus, RedisCache
from .warmer import CacheWarmer

__all__ = ["make_key", "CacheResult", "CacheStatus", "RedisCache", "CacheWarmer"]
