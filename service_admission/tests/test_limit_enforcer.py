"""
Unit tests for the limit enforcer.
"""

import math
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock
from prometheus_client import CollectorRegistry

from service_admission.app.entitlements import InMemoryEntitlementStore
from service_admission.app.models import EnforcementFailure, EnforcementSuccess, ResourceEntitlement
from service_admission.app.ratelimit import LimitEnforcer
from service_admission.app.store import CounterStoreError, InMemoryCounterStore
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, entitlement_tree, leaf

PERIOD_END = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestLimitEnforcer:
    """Test cases for LimitEnforcer."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def counter_store(self, clock):
        return InMemoryCounterStore(clock=clock.monotonic)

    @pytest.fixture
    def quota_store(self, clock):
        store = InMemoryEntitlementStore(clock=clock.utc)
        store.add_quota(
            "org-1",
            entitlement_tree(**{"search.text": leaf(quota=3, rpm=60, quota_remaining=2)}),
            period_start=clock.now,
            period_end=PERIOD_END,
        )
        return store

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("admission", CollectorRegistry())

    @pytest.fixture
    def enforcer(self, counter_store, quota_store, clock, metrics):
        return LimitEnforcer(counter_store, quota_store, clock=clock.utc, metrics=metrics)

    @pytest.mark.asyncio
    async def test_no_limits_configured(self, enforcer, quota_store):
        result = await enforcer.enforce("org-1", "org-1", "search.text", ResourceEntitlement(access=True))

        assert result == EnforcementSuccess(rpm_used=0, rpm_reset_in=None)
        assert "consume_quota" not in quota_store.calls

    @pytest.mark.asyncio
    async def test_exhausted_quota_short_circuits(self, enforcer, quota_store, clock, counter_store):
        entitlement = ResourceEntitlement(access=True, quota=100, rpm=60, quota_remaining=0)

        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert isinstance(result, EnforcementFailure)
        assert result.status == 429
        assert result.error == 'Monthly quota exceeded for "search.text" (100/100 used).'
        assert result.retry_after == math.floor((PERIOD_END - clock.now).total_seconds())
        assert "consume_quota" not in quota_store.calls
        assert await counter_store.get("rpm:org-1:search.text") is None

    @pytest.mark.asyncio
    async def test_quota_is_decremented_in_store_and_entitlement(self, enforcer, quota_store):
        entitlement = ResourceEntitlement(access=True, quota=3, quota_remaining=2)

        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert isinstance(result, EnforcementSuccess)
        assert entitlement.quota_remaining == 1
        document = await quota_store.get_active_quota("org-1")
        assert document.limits["search"]["text"]["quotaRemaining"] == 1

    @pytest.mark.asyncio
    async def test_store_refusal_reports_quota_exceeded(self, enforcer):
        entitlement = ResourceEntitlement(access=True, quota=3, quota_remaining=2)
        await enforcer.enforce("org-1", "org-1", "search.text", entitlement)
        await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        # Stale copy: the store is already at zero
        stale = ResourceEntitlement(access=True, quota=3, quota_remaining=1)
        result = await enforcer.enforce("org-1", "org-1", "search.text", stale)

        assert result.status == 429
        assert result.error == 'Monthly quota exceeded for "search.text".'
        assert stale.quota_remaining == 0

    @pytest.mark.asyncio
    async def test_missing_quota_record_is_forbidden(self, enforcer):
        entitlement = ResourceEntitlement(access=True, quota=3, quota_remaining=2)

        result = await enforcer.enforce("org-2", "org-2", "search.text", entitlement)

        assert result.status == 403
        assert result.dimension == "quota"

    @pytest.mark.asyncio
    async def test_unlimited_quota_is_not_touched(self, enforcer, quota_store):
        entitlement = ResourceEntitlement(access=True, quota=math.inf, rpm=10)

        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert result.rpm_used == 1
        assert "consume_quota" not in quota_store.calls

    @pytest.mark.asyncio
    async def test_rpm_limit(self, enforcer, metrics):
        entitlement = ResourceEntitlement(access=True, rpm=2)

        results = [await enforcer.enforce("org-1", "org-1", "search.text", entitlement) for _ in range(3)]

        assert [r.rpm_used for r in results[:2]] == [1, 2]
        denied = results[2]
        assert denied.status == 429
        assert denied.error == 'RPM limit exceeded for "search.text" (3/2 used).'
        assert denied.retry_after == 60
        assert denied.rpm_reset_in == 60
        assert metrics.registry.get_sample_value(
            "rate_limit_hits_total", {"resource": "search.text", "dimension": "rpm"}
        ) == 1

    @pytest.mark.asyncio
    async def test_rpm_window_resets(self, enforcer, clock):
        entitlement = ResourceEntitlement(access=True, rpm=1)
        await enforcer.enforce("org-1", "org-1", "search.text", entitlement)
        assert (await enforcer.enforce("org-1", "org-1", "search.text", entitlement)).status == 429

        clock.advance(60)
        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert isinstance(result, EnforcementSuccess)
        assert result.rpm_used == 1

    @pytest.mark.asyncio
    async def test_rpm_counters_are_scoped_by_identity_and_resource(self, enforcer, counter_store):
        entitlement = ResourceEntitlement(access=True, rpm=5)

        await enforcer.enforce("DEMO", "198.51.100.1", "search.text", entitlement)
        await enforcer.enforce("DEMO", "198.51.100.2", "search.text", entitlement)
        await enforcer.enforce("DEMO", "198.51.100.1", "search.image", entitlement)

        assert await counter_store.get("rpm:198.51.100.1:search.text") == "1"
        assert await counter_store.get("rpm:198.51.100.2:search.text") == "1"
        assert await counter_store.get("rpm:198.51.100.1:search.image") == "1"

    @pytest.mark.asyncio
    async def test_quota_is_charged_even_when_rpm_rejects(self, enforcer, quota_store):
        entitlement = ResourceEntitlement(access=True, quota=3, rpm=1, quota_remaining=2)
        await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert result.status == 429
        assert result.dimension == "rpm"
        assert entitlement.quota_remaining == 0

    @pytest.mark.asyncio
    async def test_quota_refusal_leaves_rpm_counter_alone(self, enforcer, quota_store, counter_store):
        entitlement = ResourceEntitlement(access=True, quota=3, rpm=5, quota_remaining=0)

        result = await enforcer.enforce("org-1", "org-1", "search.text", entitlement)

        assert result.dimension == "quota"
        assert await counter_store.get("rpm:org-1:search.text") is None

    @pytest.mark.asyncio
    async def test_fractional_rpm_rounds_down(self, enforcer):
        entitlement = ResourceEntitlement(access=True, rpm=2.5)

        first = await enforcer.enforce("DEMO", "198.51.100.1", "search.text", entitlement)
        second = await enforcer.enforce("DEMO", "198.51.100.1", "search.text", entitlement)
        third = await enforcer.enforce("DEMO", "198.51.100.1", "search.text", entitlement)

        assert isinstance(first, EnforcementSuccess)
        assert isinstance(second, EnforcementSuccess)
        assert isinstance(third, EnforcementFailure)
        assert third.error == 'RPM limit exceeded for "search.text" (3/2 used).'

    @pytest.mark.asyncio
    async def test_counter_store_failure_propagates(self, quota_store, clock):
        counter_store = AsyncMock()
        counter_store.increment_within_limit.side_effect = CounterStoreError("increment_within_limit", "timeout")
        enforcer = LimitEnforcer(counter_store, quota_store, clock=clock.utc)

        with pytest.raises(CounterStoreError):
            await enforcer.enforce("org-1", "org-1", "search.text", ResourceEntitlement(access=True, rpm=5))
