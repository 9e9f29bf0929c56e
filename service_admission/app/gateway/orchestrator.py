"""
Admission orchestration.

``AdmissionGateway.guard`` wraps a protected handler. Each call walks the
request through IP and resource checks, credential resolution, entitlement
lookup and limit enforcement before the handler runs. Every outcome is
returned as a :class:`GatewayResult` carrying the best rate-limit headers
known at the point of exit.
"""

import functools
import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from shared.errors import AccessLayerException, RateLimitError, ValidationError
from shared.logging import get_logger, set_admission_context
from shared.metrics import MetricsCollector
from ..auth.credentials import CredentialResolver, extract_api_key, get_header
from ..entitlements.periods import utcnow
from ..entitlements.plan_cache import PlanCache
from ..entitlements.resolver import EntitlementResolver
from ..models import (
    DEMO_SUBJECT,
    AdmissionContext,
    AdmissionFailure,
    AdmissionStage,
    AdmissionSuccess,
    CredentialKind,
    EnforcementFailure,
    EntitlementStatus,
    GatewayResult,
)
from ..ratelimit.enforcer import LimitEnforcer
from ..ratelimit.headers import DEFAULT_WINDOW_SECONDS, build_rate_limit_headers, with_retry_after

Handler = Callable[..., Any]

NO_CLIENT_IP = "Cannot determine client IP for rate-limit."
INVALID_RESOURCE = "Rate-limit mis-config: resource path missing/invalid."
MISSING_KEY = "API key missing."
DEMO_ON_PRIVATE_ROUTE = (
    "Demo mode is not available for private-key routes. "
    "Demos are only supported with public API keys."
)
DEMO_NOT_SUPPORTED = (
    "Demo mode is not supported on this API route. "
    "Check the documentation for available demo endpoints."
)
INTERNAL_ERROR = "Internal server error."


def client_ip(headers: Mapping[str, Any]) -> Optional[str]:
    """First ``X-Forwarded-For`` hop, else ``X-Real-IP``."""
    forwarded = get_header(headers, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = get_header(headers, "x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return None


@dataclass
class _Attempt:
    resource: Any
    headers: Dict[str, str]
    stage: AdmissionStage = AdmissionStage.START
    started: float = field(default_factory=time.perf_counter)


@dataclass(frozen=True)
class _Subject:
    kind: CredentialKind
    subject: str
    organization_id: Optional[str]
    quota_owner: str
    rpm_identity: str
    plan_id: Optional[str] = None


class AdmissionGateway:
    """Decides whether a request may reach its protected handler."""

    def __init__(self, credentials: CredentialResolver, plan_cache: PlanCache,
                 resolver: EntitlementResolver, enforcer: LimitEnforcer,
                 demo_organization_id: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.credentials = credentials
        self.plan_cache = plan_cache
        self.resolver = resolver
        self.enforcer = enforcer
        self.demo_organization_id = demo_organization_id
        self.metrics = metrics
        self._clock = clock or utcnow
        self.logger = get_logger("admission.gateway")

    def guard(self, handler: Handler, resource: str, key_type: str = "public",
              supports_demo: bool = True) -> Callable[..., Awaitable[GatewayResult]]:
        """Wrap ``handler`` so it only runs for admitted requests.

        ``key_type`` is validated here so a mistyped route fails at startup.
        """
        CredentialResolver.expected_kind(key_type)

        @functools.wraps(handler)
        async def wrapper(request, *params):
            return await self.admit(
                handler, request, *params,
                resource=resource, key_type=key_type, supports_demo=supports_demo,
            )

        return wrapper

    async def admit(self, handler: Handler, request, *params, resource: str,
                    key_type: str = "public", supports_demo: bool = True) -> GatewayResult:
        label = resource if isinstance(resource, str) and resource else ""
        attempt = _Attempt(resource=resource, headers=build_rate_limit_headers(label))
        set_admission_context(resource=label or None)

        try:
            return await self._admit(attempt, handler, request, params, key_type, supports_demo)
        except RateLimitError as e:
            attempt.headers = with_retry_after(attempt.headers, e.retry_after)
            return self._reject(attempt, e.status_code, e.message)
        except AccessLayerException as e:
            if e.status_code >= 500:
                self.logger.error("Admission failed on a dependency", stage=attempt.stage.value,
                                  code=e.code, error=e.message, exc_info=True)
                return self._reject(attempt, e.status_code, INTERNAL_ERROR, {"code": e.code})
            return self._reject(attempt, e.status_code, e.message)

    async def _admit(self, attempt: _Attempt, handler: Handler, request, params: Tuple,
                     key_type: str, supports_demo: bool) -> GatewayResult:
        headers = getattr(request, "headers", None) or {}

        ip = client_ip(headers)
        if not ip:
            raise ValidationError(NO_CLIENT_IP)
        attempt.stage = AdmissionStage.IP_RESOLVED

        resource = attempt.resource
        if not isinstance(resource, str) or not resource:
            raise ValidationError(INVALID_RESOURCE)
        attempt.stage = AdmissionStage.RESOURCE_VALIDATED

        api_key = extract_api_key(headers)
        if not api_key:
            return self._reject(attempt, 401, MISSING_KEY)
        attempt.stage = AdmissionStage.CREDENTIAL_EXTRACTED

        if self.credentials.is_demo(api_key):
            attempt.stage = AdmissionStage.DEMO_BRANCH
            if key_type == CredentialKind.PRIVATE.value:
                raise ValidationError(DEMO_ON_PRIVATE_ROUTE)
            if not supports_demo:
                raise ValidationError(DEMO_NOT_SUPPORTED)
            subject = _Subject(
                kind=CredentialKind.DEMO,
                subject=DEMO_SUBJECT,
                organization_id=self.demo_organization_id,
                quota_owner=DEMO_SUBJECT,
                rpm_identity=ip,
            )
        else:
            attempt.stage = AdmissionStage.KEYED_BRANCH
            credential = await self.credentials.resolve(api_key, key_type)
            organization_id = credential.organization_id
            set_admission_context(organization_id=organization_id)
            plan_id = await self.plan_cache.resolve_plan_id(organization_id)
            subject = _Subject(
                kind=credential.kind,
                subject=organization_id,
                organization_id=organization_id,
                quota_owner=organization_id,
                rpm_identity=organization_id,
                plan_id=plan_id,
            )

        resolution = await self.resolver.resolve(subject.subject, resource, subject.plan_id)
        attempt.stage = AdmissionStage.ENTITLEMENT_RESOLVED
        if resolution.status == EntitlementStatus.NOT_FOUND:
            return self._reject(attempt, 403, f'No entitlement for "{resource}".')

        entitlement = resolution.entitlement
        attempt.headers = build_rate_limit_headers(resource, entitlement, now=self._clock())
        if resolution.status == EntitlementStatus.DENIED:
            return self._reject(attempt, 403, f'Access denied to "{resource}".')

        outcome = await self.enforcer.enforce(
            subject.quota_owner, subject.rpm_identity, resource, entitlement
        )
        attempt.stage = AdmissionStage.LIMITS_ENFORCED
        attempt.headers = build_rate_limit_headers(
            resource, entitlement, outcome.rpm_used, outcome.rpm_reset_in, now=self._clock()
        )
        if isinstance(outcome, EnforcementFailure):
            if outcome.status == 429:
                raise RateLimitError(outcome.error, retry_after=outcome.retry_after or DEFAULT_WINDOW_SECONDS)
            return self._reject(attempt, outcome.status, outcome.error)

        self._record(attempt, "admitted", 200)
        context = AdmissionContext(
            resource_entitlement=entitlement,
            organization_id=subject.organization_id,
            resource=resource,
            credential_kind=subject.kind,
        )

        attempt.stage = AdmissionStage.HANDLER_INVOKED
        try:
            value = handler(request, *params, context)
            if inspect.isawaitable(value):
                value = await value
        except Exception:
            self.logger.error("Route handler raised", exc_info=True)
            return AdmissionFailure(status=500, error=INTERNAL_ERROR,
                                    headers=attempt.headers, stage=attempt.stage)

        attempt.stage = AdmissionStage.RESPONSE_EMITTED
        return self._normalize(value, attempt)

    def _normalize(self, value: Any, attempt: _Attempt) -> GatewayResult:
        if isinstance(value, Mapping):
            body = dict(value)
            status = body.pop("status", None)
            error = body.pop("error", None)
            if error is not None:
                return AdmissionFailure(
                    status=status or 400, error=error, headers=attempt.headers,
                    stage=attempt.stage, extra=body,
                )
            return AdmissionSuccess(body=body, headers=attempt.headers, status=status)
        return AdmissionSuccess(body={"data": value}, headers=attempt.headers)

    def _reject(self, attempt: _Attempt, status: int, error: str,
                extra: Optional[Dict[str, Any]] = None) -> AdmissionFailure:
        if status < 500:
            self.logger.warning("Admission denied", stage=attempt.stage.value, status=status, error=error)
        self._record(attempt, "rejected", status)
        return AdmissionFailure(
            status=status,
            error=error,
            headers=attempt.headers,
            stage=attempt.stage,
            extra=extra or {},
        )

    def _record(self, attempt: _Attempt, outcome: str, status: int) -> None:
        if outcome == "admitted":
            self.logger.info("Admission granted", stage=attempt.stage.value)
        if not self.metrics:
            return
        resource = attempt.resource if isinstance(attempt.resource, str) else ""
        self.metrics.record_admission(resource, outcome, status)
        self.metrics.observe_histogram(
            "admission_duration_seconds", time.perf_counter() - attempt.started, resource=resource
        )
