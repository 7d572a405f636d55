"""
Shared utilities for the Homebase API Security Gateway.

This package aggregates common building blocks consumed by the security
service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and JSON error responses
- circuit_breaker: Resilient external call protection

Any cross-service logic should live here to avoid import cycles. Do not
import from service_* packages into homebase_shared/.
"""
