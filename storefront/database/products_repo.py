"""Repository layer for product and variant database operations."""

import uuid
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.models import Product, ProductVariant


class ProductRepository:
    """Repository for product database operations."""

    @staticmethod
    async def get_product(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Product]:
        stmt = select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        variant_id: uuid.UUID,
        product_id: Optional[uuid.UUID] = None,
        for_update: bool = False,
    ) -> Optional[ProductVariant]:
        stmt = select(ProductVariant).where(
            ProductVariant.id == variant_id,
            ProductVariant.tenant_id == tenant_id,
        )
        if product_id is not None:
            stmt = stmt.where(ProductVariant.product_id == product_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def lock_products(db: AsyncSession, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Product]:
        """Lock product rows in ID order and return them keyed by ID."""
        ids = sorted(set(product_ids), key=str)
        if not ids:
            return {}
        result = await db.execute(
            select(Product)
            .where(Product.id.in_(ids))
            .order_by(Product.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {p.id: p for p in result.scalars().all()}

    @staticmethod
    async def lock_variants(db: AsyncSession, variant_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProductVariant]:
        """Lock variant rows in ID order and return them keyed by ID."""
        ids = sorted(set(variant_ids), key=str)
        if not ids:
            return {}
        result = await db.execute(
            select(ProductVariant)
            .where(ProductVariant.id.in_(ids))
            .order_by(ProductVariant.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {v.id: v for v in result.scalars().all()}

    @staticmethod
    async def get_variant_stock_totals(db: AsyncSession, product_id: uuid.UUID) -> tuple[int, int]:
        """Return (variant_count, sum_of_variant_stock) for a product."""
        result = await db.execute(
            select(
                func.count(ProductVariant.id),
                func.coalesce(func.sum(ProductVariant.stock_quantity), 0),
            ).where(ProductVariant.product_id == product_id)
        )
        count, total = result.one()
        return int(count), int(total)

    @staticmethod
    async def list_variants(db: AsyncSession, product_id: uuid.UUID) -> list[ProductVariant]:
        result = await db.execute(
            select(ProductVariant)
            .where(ProductVariant.product_id == product_id)
            .order_by(ProductVariant.created_date, ProductVariant.sku)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_product_ids_with_variants(
        db: AsyncSession, tenant_id: Optional[uuid.UUID] = None
    ) -> list[uuid.UUID]:
        stmt = select(ProductVariant.product_id).distinct()
        if tenant_id is not None:
            stmt = stmt.where(ProductVariant.tenant_id == tenant_id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_existing_slugs(db: AsyncSession, tenant_id: uuid.UUID, base_slug: str) -> set[str]:
        result = await db.execute(
            select(Product.slug).where(Product.tenant_id == tenant_id, Product.slug.like(f"{base_slug}%"))
        )
        return set(result.scalars().all())
