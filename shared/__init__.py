"""
Shared utilities for the workspace sync client.

This package aggregates common building blocks consumed by the sync core:

- config: Client configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry with exponential backoff for gateway reads
- circuit_breaker: Resilient gateway call protection
- test_helpers: Fakes and factories used by the test suites

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_sync into shared/ (test_helpers is the one exception,
and only for model types).
"""
