"""
Organization -> plan id lookup with a write-through counter-store cache.
"""

from typing import Optional

from shared.errors import AuthorizationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..store.base import CounterStore
from .persistence.base import EntitlementStore


class MissingOrganizationError(AuthorizationError):
    def __init__(self):
        super().__init__("Key data does not name an organization.", code="MISSING_ORGANIZATION")


class NoActiveSubscriptionError(AuthorizationError):
    def __init__(self, organization_id: str):
        super().__init__(
            f"No active subscription for org {organization_id}",
            code="NO_ACTIVE_SUBSCRIPTION",
            details={"organization_id": organization_id},
        )


class PlanCache:
    """Resolves an organization's plan id.

    Cached entries never expire; plan changes are expected to overwrite the
    ``planId:{organization}`` key directly.
    """

    def __init__(self, counter_store: CounterStore, entitlement_store: EntitlementStore,
                 prefix: str = "planId", metrics: Optional[MetricsCollector] = None):
        self.counter_store = counter_store
        self.entitlement_store = entitlement_store
        self.prefix = prefix
        self.metrics = metrics
        self.logger = get_logger("admission.plan_cache")

    def cache_key(self, organization_id: str) -> str:
        return f"{self.prefix}:{organization_id}"

    async def resolve_plan_id(self, organization_id: Optional[str]) -> str:
        if not organization_id:
            raise MissingOrganizationError()

        key = self.cache_key(organization_id)
        cached = await self.counter_store.get(key)
        if cached:
            self._count("hit")
            return cached

        self._count("miss")
        subscription = await self.entitlement_store.get_active_subscription(organization_id)
        if subscription is None or not subscription.plan_id:
            raise NoActiveSubscriptionError(organization_id)

        await self.counter_store.set(key, subscription.plan_id)
        self.logger.info("Cached plan id", plan_id=subscription.plan_id)
        return subscription.plan_id

    def _count(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("plan_cache_lookups_total", result=result)
