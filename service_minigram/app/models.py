"""
Request models for the MiniGram API.

Required fields are declared optional here so the handlers can reject
incomplete bodies with a 400 before touching the store or the cache.
"""

from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request model for user registration."""
    username: Optional[str] = Field(None, description="Unique username")
    email: Optional[str] = Field(None, description="Unique email address")
    password: Optional[str] = Field(None, description="Plain-text password, stored hashed")


class PostCreateRequest(BaseModel):
    """Request model for post creation."""
    user_id: Optional[int] = Field(None, description="Author user ID")
    content: Optional[str] = Field(None, description="Post body")
    image_url: Optional[str] = Field(None, description="URL of an already uploaded image")


class CacheInvalidateRequest(BaseModel):
    """Request model for pattern invalidation."""
    pattern: Optional[str] = Field(None, description="Glob pattern, defaults to every key")
