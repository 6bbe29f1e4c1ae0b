"""
Shared utilities for the clinic permissions engine.

This package aggregates common building blocks consumed by the engine:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with correlation context
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry decorator for store calls

Any cross-cutting logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
