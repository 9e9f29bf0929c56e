from .enforcer import QUOTA_DIMENSION, RPM_DIMENSION, LimitEnforcer
from .headers import (
    QUOTA_LIMIT_HEADER,
    QUOTA_REMAINING_HEADER,
    QUOTA_RESET_HEADER,
    RESOURCE_HEADER,
    RETRY_AFTER_HEADER,
    RPM_LIMIT_HEADER,
    RPM_REMAINING_HEADER,
    RPM_RESET_HEADER,
    build_rate_limit_headers,
    format_number,
    with_retry_after,
)

__all__ = [
    "LimitEnforcer",
    "QUOTA_DIMENSION",
    "QUOTA_LIMIT_HEADER",
    "QUOTA_REMAINING_HEADER",
    "QUOTA_RESET_HEADER",
    "RESOURCE_HEADER",
    "RETRY_AFTER_HEADER",
    "RPM_DIMENSION",
    "RPM_LIMIT_HEADER",
    "RPM_REMAINING_HEADER",
    "RPM_RESET_HEADER",
    "build_rate_limit_headers",
    "format_number",
    "with_retry_after",
]
