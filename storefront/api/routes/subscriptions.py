"""Subscription usage and quota routes."""

from fastapi import APIRouter

from storefront.api.deps import DB, CurrentTenant
from storefront.models.plan_limits import ResourceType
from storefront.schemas.subscriptions import QuotaCheckResponse, QuotaInfo, UsageSnapshot
from storefront.services.quota_ledger import QuotaLedger
from storefront.utils.envelopes import api_success
from storefront.utils.exceptions import NoActivePlan, ValidationException

router = APIRouter(tags=["subscriptions"])


@router.get("/subscriptions/usage", response_model=dict)
async def get_usage(tenant: CurrentTenant, db: DB):
    """Current plan and per-resource usage for the dashboard."""
    snapshot = await QuotaLedger.usage_snapshot(db, tenant)
    return api_success(
        UsageSnapshot(
            plan=snapshot["plan"],
            plan_expires_at=snapshot["plan_expires_at"],
            has_active_plan=snapshot["has_active_plan"],
            quotas={name: QuotaInfo(**info) for name, info in snapshot["quotas"].items()},
        ).model_dump(mode="json")
    )


@router.get("/subscriptions/quota/{resource}", response_model=dict)
async def check_quota(resource: str, tenant: CurrentTenant, db: DB):
    """Whether one more resource of this type can be created right now."""
    try:
        resource_type = ResourceType(resource)
    except ValueError:
        raise ValidationException(
            f"Unknown resource type: {resource}",
            details={"allowed": [r.value for r in ResourceType]},
        )

    try:
        decision = await QuotaLedger.can_create(db, tenant, resource_type)
    except NoActivePlan as exc:
        return api_success(
            QuotaCheckResponse(resource=resource_type.value, allowed=False, current=0, limit=0, reason=exc.message).model_dump()
        )

    return api_success(
        QuotaCheckResponse(
            resource=resource_type.value,
            allowed=decision.allowed,
            current=decision.current,
            limit=decision.limit_value,
            reason=decision.reason,
        ).model_dump()
    )
