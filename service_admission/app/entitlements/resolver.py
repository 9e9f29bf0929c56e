"""
Entitlement resolution for one (subject, resource) pair.

Documents are read fresh on every request so a decrement made by an earlier
request is always visible.
"""

from typing import Optional

from shared.errors import AuthenticationError
from shared.logging import get_logger
from ..models import (
    DEMO_SUBJECT,
    EntitlementResolution,
    EntitlementStatus,
    EntitlementTree,
)
from .persistence.base import EntitlementStore, QuotaNotFoundError


class TemplateNotFoundError(AuthenticationError):
    def __init__(self, name: str):
        super().__init__(
            f'Quota template "{name}" not found.',
            code="TEMPLATE_NOT_FOUND",
            details={"template": name},
        )


class EntitlementResolver:
    """Looks up the resource entitlement for a demo or keyed subject."""

    def __init__(self, store: EntitlementStore, demo_template_name: str = DEMO_SUBJECT):
        self.store = store
        self.demo_template_name = demo_template_name
        self.logger = get_logger("admission.entitlements")

    async def resolve(self, subject: str, resource: str,
                      plan_id: Optional[str] = None) -> EntitlementResolution:
        """Resolve ``resource`` for ``subject`` (an organization id or ``DEMO``).

        Raises:
            TemplateNotFoundError: the demo template is missing.
            QuotaNotFoundError: the organization has no live quota document.
        """
        period_end = None
        if subject == DEMO_SUBJECT:
            template = await self.store.get_quota_template(self.demo_template_name)
            if template is None:
                raise TemplateNotFoundError(self.demo_template_name)
            tree = template.tree
        else:
            document = await self.store.get_active_quota(subject, plan_id)
            if document is None:
                raise QuotaNotFoundError(subject)
            tree = document.tree
            period_end = document.period_end

        return self.evaluate(tree, resource, period_end)

    @staticmethod
    def evaluate(tree: EntitlementTree, resource: str, period_end=None) -> EntitlementResolution:
        entitlement = tree.lookup(resource)
        if entitlement is None:
            return EntitlementResolution(status=EntitlementStatus.NOT_FOUND)

        entitlement.quota_reset = period_end
        if not entitlement.access:
            return EntitlementResolution(status=EntitlementStatus.DENIED, entitlement=entitlement)
        return EntitlementResolution(status=EntitlementStatus.GRANTED, entitlement=entitlement)
