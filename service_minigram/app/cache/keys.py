"""
Cache key construction for MiniGram.
"""

import re
from typing import Any, Optional


USER_PREFIX = "user"
USER_EMAIL_PREFIX = "user_email"
POST_PREFIX = "post"
POSTS_PREFIX = "posts"
USER_POSTS_PREFIX = "user_posts"
SYSTEM_STATS_KEY = "system:stats"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9:_-]")


def make_key(prefix: str, identifier: Any, params: Optional[str] = None) -> str:
    """Build a ``prefix:identifier[:params]`` key safe for the key-value store.

    Any character outside ``[A-Za-z0-9:_-]`` is replaced with ``_``. Two
    distinct raw keys can sanitize to the same string; callers accept that.
    """
    key = f"{prefix}:{identifier}"
    if params:
        key = f"{key}:{params}"
    return _UNSAFE_CHARS.sub("_", key)


def page_params(page: int, limit: int) -> str:
    """Query-shape suffix for paginated listings."""
    return f"page:{page}:limit:{limit}"


def user_key(user_id: Any) -> str:
    return make_key(USER_PREFIX, user_id)


def user_email_key(email: str) -> str:
    return make_key(USER_EMAIL_PREFIX, email)


def post_key(post_id: Any) -> str:
    return make_key(POST_PREFIX, post_id)


def recent_posts_key(page: int, limit: int) -> str:
    return make_key(POSTS_PREFIX, "recent", page_params(page, limit))


def user_posts_key(user_id: Any, page: int, limit: int) -> str:
    return make_key(USER_POSTS_PREFIX, user_id, page_params(page, limit))


def recent_posts_pattern() -> str:
    """Glob matching every cached page of the recent posts feed."""
    return f"{POSTS_PREFIX}:recent:*"


def user_posts_pattern(user_id: Any) -> str:
    """Glob matching every cached page of one user's posts."""
    return f"{make_key(USER_POSTS_PREFIX, user_id)}:*"
