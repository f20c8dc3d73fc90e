"""Health endpoints: database, plan catalogue and integration status."""

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import DB
from storefront.core.config import settings
from storefront.database.tenant_repo import TenantRepository
from storefront.integrations.payment_providers import get_payment_provider
from storefront.models.models import PaymentMethod
from storefront.utils.envelopes import api_success

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_status(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return f"unhealthy: {e}"
    return "healthy"


def _integration_status() -> dict:
    return {
        "notifications": "configured" if settings.SERVICEBUS_CONNECTION_STRING else "disabled",
        "payment_methods": {
            method.value: get_payment_provider(method).configured for method in PaymentMethod
        },
    }


@router.get("/health", response_model=dict)
async def health_check(db: DB):
    """Database connectivity plus which gateways and queues are wired up."""
    db_status = await _database_status(db)
    return api_success(
        {
            "status": "ok" if db_status == "healthy" else "degraded",
            "service": settings.APP_NAME,
            "database": db_status,
            **_integration_status(),
        }
    )


@router.get("/health/ready", response_model=dict)
async def readiness_check(db: DB):
    """Ready once the database answers and at least one active plan is seeded.

    Without a plan every quota-gated write fails with NO_ACTIVE_PLAN.
    """
    if await _database_status(db) != "healthy":
        return api_success({"ready": False, "reason": "database unavailable"})
    if await TenantRepository.count_active_plans(db) == 0:
        return api_success({"ready": False, "reason": "no active plans"})
    return api_success({"ready": True})


@router.get("/health/live", response_model=dict)
async def liveness_check():
    """Kubernetes liveness probe."""
    return api_success({"alive": True})
