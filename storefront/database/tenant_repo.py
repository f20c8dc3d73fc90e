"""Repository layer for tenant, plan and resource-count queries.

This module contains ONLY database access logic - no business rules.
Counts always hit the database so quota decisions never use cached numbers.
"""

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.models import Blog, Customer, Order, Page, Plan, Product, StaffMember, Tenant
from storefront.models.plan_limits import ResourceType


_COUNTED_MODELS = {
    ResourceType.PRODUCT: Product,
    ResourceType.ORDER: Order,
    ResourceType.PAGE: Page,
    ResourceType.BLOG: Blog,
    ResourceType.STAFF: StaffMember,
    ResourceType.CUSTOMER: Customer,
}


class TenantRepository:
    """Repository for tenant and plan database operations."""

    @staticmethod
    async def get_tenant(
        db: AsyncSession, tenant_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Tenant]:
        """
        Fetch a tenant by ID.

        Args:
            db: Database session
            tenant_id: ID of the tenant
            for_update: Lock the tenant row until the transaction ends. Quota-gated
                writes take this lock so concurrent creations for one tenant queue up.

        Returns:
            Tenant if found, None otherwise
        """
        stmt = select(Tenant).where(Tenant.id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_plan(db: AsyncSession, plan_id: uuid.UUID) -> Optional[Plan]:
        result = await db.execute(select(Plan).where(Plan.id == plan_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_plan_by_code(db: AsyncSession, plan_code: str) -> Optional[Plan]:
        result = await db.execute(select(Plan).where(Plan.code == plan_code))
        return result.scalar_one_or_none()

    @staticmethod
    async def count_active_plans(db: AsyncSession) -> int:
        result = await db.execute(select(func.count()).select_from(Plan).where(Plan.is_active.is_(True)))
        return int(result.scalar_one())

    @staticmethod
    async def _count(db: AsyncSession, model, tenant_id: uuid.UUID) -> int:
        result = await db.execute(select(func.count()).select_from(model).where(model.tenant_id == tenant_id))
        return int(result.scalar_one())

    @staticmethod
    async def count_products(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, Product, tenant_id)

    @staticmethod
    async def count_orders(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, Order, tenant_id)

    @staticmethod
    async def count_pages(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, Page, tenant_id)

    @staticmethod
    async def count_blogs(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, Blog, tenant_id)

    @staticmethod
    async def count_staff(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, StaffMember, tenant_id)

    @staticmethod
    async def count_customers(db: AsyncSession, tenant_id: uuid.UUID) -> int:
        return await TenantRepository._count(db, Customer, tenant_id)

    @staticmethod
    async def count_resource(db: AsyncSession, tenant_id: uuid.UUID, resource: ResourceType) -> int:
        """Count committed resources of one type. Storage has no count source and returns 0."""
        model = _COUNTED_MODELS.get(resource)
        if model is None:
            return 0
        return await TenantRepository._count(db, model, tenant_id)
