"""
Shared utilities for the MiniGram services.

This package aggregates common building blocks consumed by every service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and instance correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI scaffold with health, metrics and lifecycle hooks
- test_helpers: In-memory doubles for Redis and the store of record

Do not import from service packages into shared/.
"""
