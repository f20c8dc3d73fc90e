"""Plan quota enforcement for tenant resources."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database.tenant_repo import TenantRepository
from storefront.models.models import Plan, Tenant, as_utc, utcnow
from storefront.models.plan_limits import Limit, ResourceType, Unlimited
from storefront.services.notification_service import NotificationService
from storefront.utils.exceptions import NoActivePlan, NotFoundException, QuotaExceeded

logger = logging.getLogger(__name__)


# (label, verb, plural) used in denial reasons
_RESOURCE_LABELS = {
    ResourceType.PRODUCT: ("Product", "add", "products"),
    ResourceType.ORDER: ("Order", "process", "orders"),
    ResourceType.PAGE: ("Page", "add", "pages"),
    ResourceType.BLOG: ("Blog", "add", "blogs"),
    ResourceType.STAFF: ("Staff user", "add", "staff users"),
    ResourceType.CUSTOMER: ("Customer", "add", "customers"),
    ResourceType.STORAGE: ("Storage", "use", "storage"),
}


@dataclass(frozen=True)
class QuotaDecision:
    resource: ResourceType
    allowed: bool
    current: int
    limit: Limit
    reason: Optional[str] = None

    @property
    def limit_value(self) -> Optional[int]:
        """Numeric limit, or None when unlimited."""
        return None if isinstance(self.limit, Unlimited) else self.limit.value


def _limit_reason(resource: ResourceType, current: int, limit: int) -> str:
    label, verb, plural = _RESOURCE_LABELS[resource]
    return f"{label} limit reached ({current}/{limit}). Please upgrade your plan to {verb} more {plural}."


class QuotaLedger:
    """Answers whether a tenant may create one more resource of a given type."""

    @staticmethod
    async def get_active_plan(
        db: AsyncSession, tenant: Tenant, now: Optional[datetime] = None
    ) -> Optional[Plan]:
        """Return the tenant's plan if it is assigned, enabled and not expired."""
        if tenant.plan_id is None:
            return None
        plan = await TenantRepository.get_plan(db, tenant.plan_id)
        if plan is None or not plan.is_active:
            return None
        expires_at = as_utc(tenant.plan_expires_at)
        if expires_at is not None and expires_at <= (now or utcnow()):
            return None
        return plan

    @staticmethod
    async def can_create(db: AsyncSession, tenant: Tenant, resource: ResourceType) -> QuotaDecision:
        """
        Check whether the tenant can create one more ``resource``.

        Raises:
            NoActivePlan: tenant has no plan, or its plan has expired
        """
        plan = await QuotaLedger.get_active_plan(db, tenant)
        if plan is None:
            raise NoActivePlan()

        limit = plan.limits.for_resource(resource)

        if resource == ResourceType.STORAGE:
            # Byte usage is not tracked yet; storage is never denied
            return QuotaDecision(resource=resource, allowed=True, current=0, limit=limit)

        if isinstance(limit, Unlimited):
            return QuotaDecision(resource=resource, allowed=True, current=0, limit=limit)

        current = await TenantRepository.count_resource(db, tenant.id, resource)
        if current < limit.value:
            return QuotaDecision(resource=resource, allowed=True, current=current, limit=limit)

        return QuotaDecision(
            resource=resource,
            allowed=False,
            current=current,
            limit=limit,
            reason=_limit_reason(resource, current, limit.value),
        )

    @staticmethod
    async def require(db: AsyncSession, tenant: Tenant, resource: ResourceType) -> QuotaDecision:
        """
        Gate a resource-creating write.

        Locks the tenant row for the rest of the caller's transaction so that
        concurrent creations for the same tenant are checked one at a time,
        then raises if the quota is used up.

        Raises:
            NoActivePlan: tenant has no active plan
            QuotaExceeded: tenant is at its limit
        """
        locked = await TenantRepository.get_tenant(db, tenant.id, for_update=True)
        if locked is None:
            raise NotFoundException("Tenant not found")

        decision = await QuotaLedger.can_create(db, locked, resource)
        if decision.allowed:
            return decision

        logger.info(
            "Quota exceeded for tenant %s: %s %s/%s",
            locked.id,
            resource.value,
            decision.current,
            decision.limit_value,
        )
        await NotificationService.publish_event(
            "quota.exceeded",
            locked.id,
            {"resource": resource.value, "current": decision.current, "limit": decision.limit_value},
        )
        raise QuotaExceeded(
            message=decision.reason or "Quota exceeded",
            resource=resource.value,
            current=decision.current,
            limit=decision.limit_value,
        )

    @staticmethod
    async def usage_snapshot(db: AsyncSession, tenant: Tenant) -> dict[str, Any]:
        """Usage and limits for every resource type (read-only).

        A tenant without an active plan reports a limit of 0 everywhere since
        nothing can be created.
        """
        plan = await QuotaLedger.get_active_plan(db, tenant)
        quotas: dict[str, dict[str, Optional[int]]] = {}

        for resource in ResourceType:
            current = await TenantRepository.count_resource(db, tenant.id, resource)
            if plan is None:
                limit_value: Optional[int] = 0
            else:
                limit = plan.limits.for_resource(resource)
                limit_value = None if isinstance(limit, Unlimited) else limit.value
            quotas[resource.value] = {"current": current, "limit": limit_value}

        return {
            "plan": plan.code if plan else None,
            "plan_expires_at": tenant.plan_expires_at,
            "has_active_plan": plan is not None,
            "quotas": quotas,
        }
