"""
Admission gateway service.
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ConfigurationError
from .auth.cipher import FernetKeyCipher, KeyCipher
from .auth.credentials import CredentialResolver
from .auth.key_client import KeyAuthClient, KeyAuthenticator
from .entitlements.persistence.base import EntitlementStore
from .entitlements.persistence.postgres import PostgresEntitlementStore
from .entitlements.plan_cache import PlanCache
from .entitlements.resolver import EntitlementResolver
from .gateway.orchestrator import AdmissionGateway, Handler
from .gateway.responses import render_response
from .ratelimit.enforcer import LimitEnforcer
from .store.base import CounterStore
from .store.redis_store import RedisCounterStore

SERVICE_NAME = "admission"
SERVICE_PORT = 8020


class GatewayService(BaseService):
    """Admission gateway service.

    Collaborators default to the Redis counter store, the PostgreSQL
    entitlement store and the HTTP key-auth client; tests inject fakes.
    """

    def __init__(self, config: Optional[ServiceConfig] = None,
                 counter_store: Optional[CounterStore] = None,
                 entitlement_store: Optional[EntitlementStore] = None,
                 authenticator: Optional[KeyAuthenticator] = None,
                 cipher: Optional[KeyCipher] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        self.counter_store = counter_store or RedisCounterStore(
            self.config.redis_url,
            timeout_seconds=self.config.store_timeout_seconds,
        )
        self.entitlement_store = entitlement_store or PostgresEntitlementStore(
            self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            timeout_seconds=self.config.store_timeout_seconds,
        )
        self.authenticator = authenticator or KeyAuthClient(
            self.config.auth_service_url,
            failure_threshold=self.config.auth_failure_threshold,
            recovery_timeout=self.config.auth_recovery_timeout,
        )
        self.cipher = cipher or self._build_cipher()

        self.credentials = CredentialResolver(self.authenticator, self.cipher, self.config.demo_key)
        self.plan_cache = PlanCache(
            self.counter_store,
            self.entitlement_store,
            prefix=self.config.plan_cache_prefix,
            metrics=self.metrics,
        )
        self.resolver = EntitlementResolver(
            self.entitlement_store,
            demo_template_name=self.config.demo_template_name,
        )
        self.enforcer = LimitEnforcer(
            self.counter_store,
            self.entitlement_store,
            window_seconds=self.config.rpm_window_seconds,
            key_prefix=self.config.rpm_key_prefix,
            clock=clock,
            metrics=self.metrics,
        )
        self.gateway = AdmissionGateway(
            self.credentials,
            self.plan_cache,
            self.resolver,
            self.enforcer,
            demo_organization_id=self.config.demo_organization_id,
            metrics=self.metrics,
            clock=clock,
        )

        self._setup_admission_routes()

    def _build_cipher(self) -> KeyCipher:
        if not self.config.key_encryption_secret:
            raise ConfigurationError("ACCESS_KEY_ENCRYPTION_SECRET is not set")
        return FernetKeyCipher(self.config.key_encryption_secret)

    async def on_startup(self) -> None:
        await self.counter_store.connect()
        await self.entitlement_store.connect()

    async def on_shutdown(self) -> None:
        await self.counter_store.close()
        await self.entitlement_store.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "counter_store": "ok" if await self.counter_store.ping() else "error",
            "entitlement_store": "ok" if await self.entitlement_store.ping() else "error",
        }

    def _setup_admission_routes(self):
        @self.app.get("/api/v1/status")
        async def api_status():
            status = {
                "service": self.service_name,
                "demo_enabled": bool(self.config.demo_key),
                "rpm_window_seconds": self.config.rpm_window_seconds,
            }
            breaker = getattr(self.authenticator, "circuit_breaker", None)
            if breaker is not None:
                status["key_auth_circuit"] = breaker.get_state()
            return status

    def guarded_route(self, path: str, resource: str, key_type: str = "public",
                      supports_demo: bool = True, methods: Optional[Iterable[str]] = None):
        """Mount ``handler`` at ``path`` behind admission control.

        The handler is called as ``handler(request, *path_params, context)``
        and its result is rendered with the rate-limit headers attached.
        """
        def decorator(handler: Handler) -> Handler:
            guarded = self.gateway.guard(handler, resource, key_type, supports_demo)

            async def endpoint(request: Request):
                result = await guarded(request, *request.path_params.values())
                return render_response(result)

            self.app.add_api_route(
                path,
                endpoint,
                methods=list(methods or ["GET"]),
                name=handler.__name__,
            )
            return handler

        return decorator


def create_app():
    """Create FastAPI application."""
    service = GatewayService(get_config(SERVICE_NAME, SERVICE_PORT))
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
