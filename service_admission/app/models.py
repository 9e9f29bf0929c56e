"""
Domain models for the admission gateway.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNLIMITED = "unlimited"
DEMO_SUBJECT = "DEMO"

Limit = Optional[Union[int, float]]


class CredentialKind(str, Enum):
    """Credential flavours accepted by the gateway."""
    DEMO = "demo"
    PUBLIC = "public"
    PRIVATE = "private"


class KeyData(BaseModel):
    """Decrypted payload embedded in public/private keys."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    organization_id: Optional[str] = Field(default=None, alias="organizationId")

    @field_validator("organization_id", mode="before")
    @classmethod
    def _organization_id_as_text(cls, value: Any) -> Optional[str]:
        # Numeric ids are normalized to text; other shapes carry no usable id.
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(value)
        return value if isinstance(value, str) else None


@dataclass(frozen=True)
class ResolvedCredential:
    """Outcome of credential resolution."""
    kind: CredentialKind
    api_key: str
    key_data: Optional[KeyData] = None

    @property
    def organization_id(self) -> Optional[str]:
        return self.key_data.organization_id if self.key_data else None


def coerce_limit(value: Any) -> Limit:
    """Normalize a stored quota/rpm value.

    ``None`` means the dimension is not configured. ``"unlimited"`` (or the
    JSON ``Infinity`` literal) means unbounded.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in (UNLIMITED, "infinity", "inf"):
            return math.inf
        try:
            number = float(lowered)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    return None


def is_finite(value: Limit) -> bool:
    return value is not None and math.isfinite(value)


def render_limit(value: Limit) -> Any:
    if value is None:
        return None
    if math.isinf(value):
        return UNLIMITED
    return value


@dataclass
class ResourceEntitlement:
    """Leaf of an entitlement tree, mutated in place as quota is consumed."""
    access: bool
    quota: Limit = None
    rpm: Limit = None
    quota_remaining: Optional[float] = None
    quota_reset: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ResourceEntitlement":
        remaining = coerce_limit(data.get("quotaRemaining"))
        return cls(
            access=bool(data.get("access")),
            quota=coerce_limit(data.get("quota")),
            rpm=coerce_limit(data.get("rpm")),
            quota_remaining=remaining,
        )

    @property
    def has_finite_quota(self) -> bool:
        return is_finite(self.quota)

    @property
    def has_unlimited_quota(self) -> bool:
        return self.quota is not None and math.isinf(self.quota)

    @property
    def has_finite_rpm(self) -> bool:
        return is_finite(self.rpm)

    @property
    def rpm_ceiling(self) -> Optional[int]:
        """Whole requests allowed per window; fractional limits round down."""
        return math.floor(self.rpm) if self.has_finite_rpm else None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe view handed to protected handlers."""
        return {
            "access": self.access,
            "quota": render_limit(self.quota),
            "rpm": render_limit(self.rpm),
            "quotaRemaining": render_limit(self.quota_remaining),
            "quotaReset": self.quota_reset.isoformat() if self.quota_reset else None,
        }


class EntitlementTree:
    """Nested mapping addressed by dot-separated resource paths.

    A node is a leaf only when it is a mapping carrying an ``access`` key;
    any other node reached by a path counts as absent.
    """

    def __init__(self, root: Optional[Mapping[str, Any]] = None):
        self._root: Mapping[str, Any] = root or {}

    @property
    def root(self) -> Mapping[str, Any]:
        return self._root

    def lookup(self, resource: str) -> Optional[ResourceEntitlement]:
        if not resource:
            return None
        return self._lookup(self._root, resource.split("."))

    @classmethod
    def _lookup(cls, node: Any, segments: List[str]) -> Optional[ResourceEntitlement]:
        if not isinstance(node, Mapping):
            return None
        if not segments:
            return ResourceEntitlement.from_mapping(node) if "access" in node else None
        head, rest = segments[0], segments[1:]
        if head not in node:
            return None
        return cls._lookup(node[head], rest)


class EntitlementStatus(str, Enum):
    """Lookup outcome for one resource."""
    GRANTED = "granted"
    DENIED = "denied"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class EntitlementResolution:
    status: EntitlementStatus
    entitlement: Optional[ResourceEntitlement] = None


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class SubscriptionRecord(BaseModel):
    """Subscription row as read from the entitlement store."""

    model_config = ConfigDict(frozen=True)

    organization_id: str
    plan_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class QuotaTemplate(BaseModel):
    """Named entitlement template (plan templates and the demo template)."""

    name: str
    template: Dict[str, Any] = Field(default_factory=dict)

    @property
    def tree(self) -> EntitlementTree:
        return EntitlementTree(self.template)


class QuotaDocument(BaseModel):
    """An organization's live quota for one billing period."""

    organization_id: str
    plan_id: Optional[str] = None
    limits: Dict[str, Any] = Field(default_factory=dict)
    period_start: datetime
    period_end: datetime

    @property
    def tree(self) -> EntitlementTree:
        return EntitlementTree(self.limits)

    def covers(self, moment: datetime) -> bool:
        return self.period_start <= moment < self.period_end


@dataclass(frozen=True)
class QuotaConsumption:
    """Result of an atomic conditional quota decrement."""
    consumed: bool
    remaining: float


@dataclass(frozen=True)
class EnforcementSuccess:
    rpm_used: int = 0
    rpm_reset_in: Optional[int] = None


@dataclass(frozen=True)
class EnforcementFailure:
    status: int
    error: str
    dimension: str
    rpm_used: int = 0
    retry_after: Optional[int] = None
    rpm_reset_in: Optional[int] = None


EnforcementResult = Union[EnforcementSuccess, EnforcementFailure]


@dataclass(frozen=True)
class AdmissionContext:
    """Appended to the protected handler's arguments on admission."""
    resource_entitlement: ResourceEntitlement
    organization_id: Optional[str]
    resource: str
    credential_kind: CredentialKind


class AdmissionStage(str, Enum):
    """Orchestrator states, in order."""
    START = "start"
    IP_RESOLVED = "ip_resolved"
    RESOURCE_VALIDATED = "resource_validated"
    CREDENTIAL_EXTRACTED = "credential_extracted"
    DEMO_BRANCH = "demo_branch"
    KEYED_BRANCH = "keyed_branch"
    ENTITLEMENT_RESOLVED = "entitlement_resolved"
    LIMITS_ENFORCED = "limits_enforced"
    HANDLER_INVOKED = "handler_invoked"
    RESPONSE_EMITTED = "response_emitted"


@dataclass
class AdmissionSuccess:
    body: Dict[str, Any]
    headers: Dict[str, str]
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.body)
        if self.status is not None:
            result["status"] = self.status
        result["_rateLimitHeaders"] = dict(self.headers)
        return result


@dataclass
class AdmissionFailure:
    status: int
    error: Any
    headers: Dict[str, str]
    stage: AdmissionStage = AdmissionStage.START
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update({
            "status": self.status,
            "error": self.error,
            "_rateLimitHeaders": dict(self.headers),
        })
        return result


GatewayResult = Union[AdmissionSuccess, AdmissionFailure]
