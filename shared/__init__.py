"""
Shared utilities for the admission gateway.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request/organization correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types, HTTP status mapping and responses
- circuit_breaker: Resilient external call protection
- base_service: FastAPI service skeleton (health, metrics, error handlers)
- test_helpers: key issuance, entitlement factories and an in-memory harness

Runtime modules here never import from service_* packages; only
test_helpers does, since it wires the service together for tests.
"""
