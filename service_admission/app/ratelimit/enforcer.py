"""
Quota and RPM enforcement for a single admitted entitlement.
"""

from datetime import datetime
from typing import Callable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..entitlements.periods import seconds_until_next_month, utcnow
from ..entitlements.persistence.base import EntitlementStore, QuotaNotFoundError
from ..models import (
    EnforcementFailure,
    EnforcementResult,
    EnforcementSuccess,
    ResourceEntitlement,
)
from ..store.base import CounterStore
from .headers import format_number

QUOTA_DIMENSION = "quota"
RPM_DIMENSION = "rpm"


class LimitEnforcer:
    """Applies the monthly quota and then the per-minute ceiling.

    Both checks are atomic inside their stores: the quota is decremented only
    while something remains and the RPM counter only grows while it is below
    the ceiling. Quota is charged before the RPM check runs, so a request
    refused for RPM has still spent one unit of quota. A request refused for
    quota touches neither counter.
    """

    def __init__(self, counter_store: CounterStore, quota_store: EntitlementStore,
                 window_seconds: int = 60, key_prefix: str = "rpm",
                 clock: Optional[Callable[[], datetime]] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.counter_store = counter_store
        self.quota_store = quota_store
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self._clock = clock or utcnow
        self.metrics = metrics
        self.logger = get_logger("admission.limits")

    def rpm_key(self, identity: str, resource: str) -> str:
        return f"{self.key_prefix}:{identity}:{resource}"

    async def enforce(self, organization_id: str, rpm_identity: str, resource: str,
                      entitlement: ResourceEntitlement) -> EnforcementResult:
        """Enforce limits, updating ``entitlement.quota_remaining`` in place.

        Store transport errors propagate to the caller.
        """
        if entitlement.has_finite_quota:
            failure = await self._consume_quota(organization_id, resource, entitlement)
            if failure is not None:
                return failure

        if not entitlement.has_finite_rpm:
            return EnforcementSuccess()

        window = await self.counter_store.increment_within_limit(
            self.rpm_key(rpm_identity, resource),
            entitlement.rpm_ceiling,
            self.window_seconds,
        )
        if not window.admitted:
            attempted = window.count + 1
            self._hit(resource, RPM_DIMENSION)
            return EnforcementFailure(
                status=429,
                error=f'RPM limit exceeded for "{resource}" '
                      f'({attempted}/{entitlement.rpm_ceiling} used).',
                dimension=RPM_DIMENSION,
                rpm_used=attempted,
                retry_after=self.window_seconds,
                rpm_reset_in=window.ttl,
            )

        return EnforcementSuccess(rpm_used=window.count, rpm_reset_in=window.ttl)

    async def _consume_quota(self, organization_id: str, resource: str,
                             entitlement: ResourceEntitlement) -> Optional[EnforcementFailure]:
        quota = format_number(entitlement.quota)
        if entitlement.quota_remaining is not None and entitlement.quota_remaining <= 0:
            self._hit(resource, QUOTA_DIMENSION)
            return EnforcementFailure(
                status=429,
                error=f'Monthly quota exceeded for "{resource}" ({quota}/{quota} used).',
                dimension=QUOTA_DIMENSION,
                retry_after=seconds_until_next_month(self._clock()),
            )

        try:
            consumption = await self.quota_store.consume_quota(organization_id, resource)
        except QuotaNotFoundError as e:
            self.logger.warning("Quota record missing", error=e.message)
            return EnforcementFailure(status=403, error=e.message, dimension=QUOTA_DIMENSION)

        entitlement.quota_remaining = consumption.remaining
        if not consumption.consumed:
            self._hit(resource, QUOTA_DIMENSION)
            return EnforcementFailure(
                status=429,
                error=f'Monthly quota exceeded for "{resource}".',
                dimension=QUOTA_DIMENSION,
                retry_after=seconds_until_next_month(self._clock()),
            )
        return None

    def _hit(self, resource: str, dimension: str) -> None:
        self.logger.warning("Rate limit exceeded", dimension=dimension)
        if self.metrics:
            self.metrics.record_rate_limit_hit(resource, dimension)
