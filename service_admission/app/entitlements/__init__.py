"""
Entitlements: plan lookup, entitlement resolution and persistent quota storage.
"""

from .periods import next_month_start, seconds_until_next_month, to_unix_seconds, utcnow
from .persistence import (
    EntitlementStore,
    EntitlementStoreError,
    InMemoryEntitlementStore,
    PostgresEntitlementStore,
    QuotaNotFoundError,
)
from .plan_cache import MissingOrganizationError, NoActiveSubscriptionError, PlanCache
from .resolver import EntitlementResolver, TemplateNotFoundError

__all__ = [
    "EntitlementResolver",
    "EntitlementStore",
    "EntitlementStoreError",
    "InMemoryEntitlementStore",
    "MissingOrganizationError",
    "NoActiveSubscriptionError",
    "PlanCache",
    "PostgresEntitlementStore",
    "QuotaNotFoundError",
    "TemplateNotFoundError",
    "next_month_start",
    "seconds_until_next_month",
    "to_unix_seconds",
    "utcnow",
]
