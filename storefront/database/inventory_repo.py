"""Repository layer for inventory history and low-stock queries."""

import uuid
from typing import Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.models import (
    InventoryAdjustmentType,
    InventoryHistory,
    Product,
    ProductStatus,
    ProductVariant,
)

# Archived and inactive products are not restocked, so they never alert
_ALERTING_STATUSES = (ProductStatus.ACTIVE, ProductStatus.DRAFT)


class InventoryRepository:
    """Repository for inventory database operations."""

    @staticmethod
    async def list_history(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
        product_id: Optional[uuid.UUID] = None,
        variant_id: Optional[uuid.UUID] = None,
        adjustment_type: Optional[InventoryAdjustmentType] = None,
    ) -> tuple[list[tuple[InventoryHistory, Optional[str]]], int]:
        """
        Page through stock movements, newest first.

        Returns:
            ``[(history_row, product_name), ...]`` for the page and the total
            number of matching rows
        """
        filters = [InventoryHistory.tenant_id == tenant_id]
        if product_id is not None:
            filters.append(InventoryHistory.product_id == product_id)
        if variant_id is not None:
            filters.append(InventoryHistory.variant_id == variant_id)
        if adjustment_type is not None:
            filters.append(InventoryHistory.adjustment_type == adjustment_type)

        count_result = await db.execute(select(func.count()).select_from(InventoryHistory).where(*filters))
        total = count_result.scalar() or 0

        result = await db.execute(
            select(InventoryHistory, Product.name)
            .outerjoin(Product, Product.id == InventoryHistory.product_id)
            .where(*filters)
            .order_by(desc(InventoryHistory.created_date), InventoryHistory.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return [(row[0], row[1]) for row in result.all()], int(total)

    @staticmethod
    async def list_low_stock_products(db: AsyncSession, tenant_id: uuid.UUID, threshold: int) -> list[Product]:
        """Products without variants whose own stock is at or below ``threshold``."""
        has_variants = select(ProductVariant.id).where(ProductVariant.product_id == Product.id).exists()
        result = await db.execute(
            select(Product)
            .where(
                Product.tenant_id == tenant_id,
                Product.status.in_(_ALERTING_STATUSES),
                Product.stock_quantity <= threshold,
                ~has_variants,
            )
            .order_by(Product.stock_quantity, Product.name)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_low_stock_variants(
        db: AsyncSession, tenant_id: uuid.UUID, threshold: int
    ) -> list[tuple[ProductVariant, Product]]:
        result = await db.execute(
            select(ProductVariant, Product)
            .join(Product, Product.id == ProductVariant.product_id)
            .where(
                ProductVariant.tenant_id == tenant_id,
                Product.status.in_(_ALERTING_STATUSES),
                ProductVariant.stock_quantity <= threshold,
            )
            .order_by(ProductVariant.stock_quantity, Product.name, ProductVariant.sku)
        )
        return [(row[0], row[1]) for row in result.all()]
