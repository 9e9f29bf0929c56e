"""
Entitlement store contract and helpers shared by the store implementations.
"""

import copy
from typing import Any, Dict, List, Mapping, Optional, Protocol

from shared.errors import AuthorizationError, ServiceError
from ...models import (
    QuotaConsumption,
    QuotaDocument,
    QuotaTemplate,
    SubscriptionRecord,
    coerce_limit,
    is_finite,
)


class EntitlementStoreError(ServiceError):
    """Transport failure talking to the persistent entitlement store."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            f"Entitlement store {operation} failed: {message}",
            details={"operation": operation},
            code="ENTITLEMENT_STORE_ERROR",
        )


class QuotaNotFoundError(AuthorizationError):
    """No live quota record (or no quota counter for the resource)."""

    def __init__(self, organization_id: str, resource: Optional[str] = None):
        if resource:
            message = f'No quota record for "{resource}" in organization "{organization_id}".'
        else:
            message = f'No quota found for organization "{organization_id}".'
        super().__init__(message, code="QUOTA_NOT_FOUND",
                         details={"organization_id": organization_id})


class EntitlementStore(Protocol):
    """Persistent subscription, template and quota storage."""

    async def connect(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        ...

    async def get_active_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        ...

    async def get_quota_template(self, name: str) -> Optional[QuotaTemplate]:
        ...

    async def get_active_quota(self, organization_id: str,
                               plan_id: Optional[str] = None) -> Optional[QuotaDocument]:
        """Return the quota document covering now, opening a new period if needed."""
        ...

    async def consume_quota(self, organization_id: str, resource: str) -> QuotaConsumption:
        """Decrement ``quotaRemaining`` for ``resource`` unless it is already exhausted.

        Raises :class:`QuotaNotFoundError` when there is nothing to decrement.
        """
        ...


def resource_path(resource: str) -> List[str]:
    return resource.split(".") + ["quotaRemaining"]


def seed_quota_limits(template: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy a plan template into a fresh period's limits.

    Every leaf with a finite quota starts the period with
    ``quotaRemaining == quota``.
    """
    limits = copy.deepcopy(dict(template))

    def _walk(node: Any) -> None:
        if not isinstance(node, dict):
            return
        if "access" in node:
            quota = coerce_limit(node.get("quota"))
            if is_finite(quota):
                node["quotaRemaining"] = quota
            return
        for child in node.values():
            _walk(child)

    _walk(limits)
    return limits
