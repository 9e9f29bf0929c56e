"""
Admission gateway service package.

The gateway sits in front of protected handlers and decides per request
whether the call may proceed:
- Credentials: demo, public and private API keys
- Entitlements: plan lookup and per-resource entitlement trees
- Limits: monthly quota and requests-per-minute ceilings

Structure:
- app.main: FastAPI service wiring and guarded routes.
- app.gateway: admission orchestrator and response rendering.
- app.auth: credential resolution, key authentication and decryption.
- app.entitlements: plan cache, entitlement resolver, quota persistence.
- app.ratelimit: limit enforcement and rate-limit headers.
- app.store: counter store adapters (Redis, in-memory).
"""
