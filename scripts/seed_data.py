"""Seed database with initial data (plans, demo tenant)."""

import asyncio
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.db import get_session_factory
from storefront.core.security import create_access_token
from storefront.models.models import Plan, Tenant, utcnow


PLANS = [
    {
        "code": "free",
        "name": "Free",
        "price": 0,
        "duration_months": 1,
        "trial_days": 0,
        "features": {
            "max_products": 10,
            "max_orders": 50,
            "max_pages": 3,
            "max_blogs": 5,
            "max_staff_users": 1,
            "max_customers": 100,
            "max_storage_mb": 100,
        },
    },
    {
        "code": "basic",
        "name": "Basic",
        "price": 15,
        "duration_months": 1,
        "trial_days": 14,
        "features": {
            "max_products": 100,
            "max_orders": 1000,
            "max_pages": 10,
            "max_blogs": 50,
            "max_staff_users": 3,
            "max_customers": 2000,
            "max_storage_mb": 1024,
        },
    },
    {
        "code": "pro",
        "name": "Pro",
        "price": 49,
        "duration_months": 1,
        "trial_days": 14,
        "features": {
            "max_products": -1,  # Unlimited
            "max_orders": -1,
            "max_pages": -1,
            "max_blogs": -1,
            "max_staff_users": 10,
            "max_customers": -1,
            "max_storage_mb": 10240,
        },
    },
]


async def seed_plans(session: AsyncSession) -> None:
    """Create or update subscription plans."""
    for plan_data in PLANS:
        data = dict(plan_data)
        features = data.pop("features")

        result = await session.execute(select(Plan).where(Plan.code == data["code"]))
        plan = result.scalar_one_or_none()

        if plan:
            for key, value in data.items():
                setattr(plan, key, value)
            print(f"✓ Updated plan: {data['name']}")
        else:
            plan = Plan(**data)
            session.add(plan)
            print(f"✓ Created plan: {data['name']}")
        plan.set_features(features)

    await session.commit()


async def seed_demo_tenant(session: AsyncSession) -> None:
    """Create a demo store on the free plan and print a token for it."""
    slug = "demo-store"

    result = await session.execute(select(Tenant).where(Tenant.slug == slug))
    tenant = result.scalar_one_or_none()

    if tenant is None:
        result = await session.execute(select(Plan).where(Plan.code == "free"))
        free_plan = result.scalar_one()
        tenant = Tenant(
            name="Demo Store",
            slug=slug,
            plan_id=free_plan.id,
            plan_expires_at=utcnow() + timedelta(days=365),
        )
        session.add(tenant)
        await session.commit()
        print(f"✓ Created demo tenant: {slug}")
    else:
        print(f"✓ Demo tenant already exists: {slug}")

    token = create_access_token(tenant.id, expires_delta=timedelta(days=30))
    print(f"  Bearer token (30 days): {token}")


async def main() -> None:
    """Run all seed operations."""
    print("🌱 Seeding database...")

    async with get_session_factory()() as session:
        await seed_plans(session)
        await seed_demo_tenant(session)

    print("✅ Database seeding completed!")


if __name__ == "__main__":
    asyncio.run(main())
