"""
Rate-limit response headers.
"""

import math
from datetime import datetime
from typing import Dict, Optional, Union

from ..entitlements.periods import to_unix_seconds, utcnow
from ..models import UNLIMITED, ResourceEntitlement

RESOURCE_HEADER = "X-RateLimit-Resource"
QUOTA_LIMIT_HEADER = "X-RateLimit-Quota-Limit"
QUOTA_REMAINING_HEADER = "X-RateLimit-Quota-Remaining"
QUOTA_RESET_HEADER = "X-RateLimit-Quota-Reset"
RPM_LIMIT_HEADER = "X-RateLimit-RPM-Limit"
RPM_REMAINING_HEADER = "X-RateLimit-RPM-Remaining"
RPM_RESET_HEADER = "X-RateLimit-RPM-Reset"
RETRY_AFTER_HEADER = "Retry-After"

DEFAULT_WINDOW_SECONDS = 60


def format_number(value: Union[int, float]) -> str:
    """Render ``100.0`` as ``100`` and keep genuine fractions."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_rate_limit_headers(resource: str,
                             entitlement: Optional[ResourceEntitlement] = None,
                             rpm_used: int = 0,
                             rpm_reset_in: Optional[int] = None,
                             now: Optional[datetime] = None) -> Dict[str, str]:
    """Build the header set describing the caller's remaining allowance.

    Only the resource header is emitted until an entitlement is known.
    Remaining counts never go below zero. The RPM reset uses the live window
    TTL when the store reported one.
    """
    headers = {RESOURCE_HEADER: resource}
    if entitlement is None:
        return headers

    if entitlement.has_finite_quota:
        remaining = entitlement.quota_remaining or 0
        headers[QUOTA_LIMIT_HEADER] = format_number(entitlement.quota)
        headers[QUOTA_REMAINING_HEADER] = format_number(max(0, remaining))
        if entitlement.quota_reset is not None:
            headers[QUOTA_RESET_HEADER] = str(to_unix_seconds(entitlement.quota_reset))
    elif entitlement.has_unlimited_quota:
        headers[QUOTA_LIMIT_HEADER] = UNLIMITED
        headers[QUOTA_REMAINING_HEADER] = UNLIMITED

    if entitlement.has_finite_rpm:
        reset_in = rpm_reset_in if rpm_reset_in is not None and rpm_reset_in >= 0 else DEFAULT_WINDOW_SECONDS
        now_seconds = to_unix_seconds(now or utcnow())
        headers[RPM_LIMIT_HEADER] = str(entitlement.rpm_ceiling)
        headers[RPM_REMAINING_HEADER] = str(max(0, entitlement.rpm_ceiling - rpm_used))
        headers[RPM_RESET_HEADER] = str(now_seconds + reset_in)

    return headers


def with_retry_after(headers: Dict[str, str], seconds: Union[int, float]) -> Dict[str, str]:
    result = dict(headers)
    result[RETRY_AFTER_HEADER] = str(max(0, math.floor(seconds)))
    return result
