"""
In-memory entitlement store for tests and local development.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from ...models import (
    QuotaConsumption,
    QuotaDocument,
    QuotaTemplate,
    SubscriptionRecord,
    SubscriptionStatus,
    coerce_limit,
)
from ..periods import next_month_start, utcnow
from .base import QuotaNotFoundError, seed_quota_limits


class InMemoryEntitlementStore:
    """Dictionary-backed stand-in for :class:`PostgresEntitlementStore`.

    Reads hand out deep copies so callers never share state with the store.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow
        self.subscriptions: Dict[str, SubscriptionRecord] = {}
        self.templates: Dict[str, QuotaTemplate] = {}
        self.quotas: Dict[str, List[QuotaDocument]] = {}
        self.calls: List[str] = []

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    def add_subscription(self, organization_id: str, plan_id: Optional[str],
                         status: SubscriptionStatus = SubscriptionStatus.ACTIVE) -> SubscriptionRecord:
        record = SubscriptionRecord(organization_id=organization_id, plan_id=plan_id, status=status)
        self.subscriptions[organization_id] = record
        return record

    def add_template(self, name: str, template: Mapping[str, Any]) -> QuotaTemplate:
        quota_template = QuotaTemplate(name=name, template=dict(template))
        self.templates[name] = quota_template
        return quota_template

    def add_quota(self, organization_id: str, limits: Mapping[str, Any],
                  period_start: datetime, period_end: datetime,
                  plan_id: Optional[str] = None) -> QuotaDocument:
        document = QuotaDocument(
            organization_id=organization_id,
            plan_id=plan_id,
            limits=dict(limits),
            period_start=period_start,
            period_end=period_end,
        )
        self.quotas.setdefault(organization_id, []).append(document)
        return document

    async def get_active_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        self.calls.append("get_active_subscription")
        record = self.subscriptions.get(organization_id)
        if record is None or not record.is_active:
            return None
        return record

    async def get_quota_template(self, name: str) -> Optional[QuotaTemplate]:
        self.calls.append("get_quota_template")
        template = self.templates.get(name)
        return template.model_copy(deep=True) if template else None

    async def get_active_quota(self, organization_id: str,
                               plan_id: Optional[str] = None) -> Optional[QuotaDocument]:
        self.calls.append("get_active_quota")
        document = self._current(organization_id)
        if document is None:
            document = self._open_period(organization_id, plan_id)
        return document.model_copy(deep=True) if document else None

    async def consume_quota(self, organization_id: str, resource: str) -> QuotaConsumption:
        self.calls.append("consume_quota")
        document = self._current(organization_id)
        if document is None:
            raise QuotaNotFoundError(organization_id)

        leaf = _leaf(document.limits, resource)
        remaining = coerce_limit(leaf.get("quotaRemaining")) if leaf else None
        if remaining is None:
            raise QuotaNotFoundError(organization_id, resource)
        if remaining <= 0:
            return QuotaConsumption(consumed=False, remaining=remaining)

        leaf["quotaRemaining"] = remaining - 1
        return QuotaConsumption(consumed=True, remaining=remaining - 1)

    def _current(self, organization_id: str) -> Optional[QuotaDocument]:
        now = self._clock()
        live = [doc for doc in self.quotas.get(organization_id, []) if doc.covers(now)]
        if not live:
            return None
        return max(live, key=lambda doc: doc.period_start)

    def _open_period(self, organization_id: str, plan_id: Optional[str]) -> Optional[QuotaDocument]:
        if plan_id is None:
            record = self.subscriptions.get(organization_id)
            plan_id = record.plan_id if record and record.is_active else None
        template = self.templates.get(plan_id) if plan_id else None
        if template is None:
            return None

        now = self._clock()
        return self.add_quota(
            organization_id,
            seed_quota_limits(template.template),
            period_start=now,
            period_end=next_month_start(now),
            plan_id=plan_id,
        )


def _leaf(limits: Dict[str, Any], resource: str) -> Optional[Dict[str, Any]]:
    node: Any = limits
    for segment in resource.split("."):
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    if isinstance(node, dict) and "access" in node:
        return node
    return None
