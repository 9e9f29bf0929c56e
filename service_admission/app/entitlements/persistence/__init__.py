from .base import (
    EntitlementStore,
    EntitlementStoreError,
    QuotaNotFoundError,
    resource_path,
    seed_quota_limits,
)
from .memory import InMemoryEntitlementStore
from .postgres import PostgresEntitlementStore

__all__ = [
    "EntitlementStore",
    "EntitlementStoreError",
    "InMemoryEntitlementStore",
    "PostgresEntitlementStore",
    "QuotaNotFoundError",
    "resource_path",
    "seed_quota_limits",
]
