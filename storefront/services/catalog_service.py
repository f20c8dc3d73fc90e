"""Catalog service: quota-gated product creation, stock-safe variant edits and inventory reporting."""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.database.inventory_repo import InventoryRepository
from storefront.database.products_repo import ProductRepository
from storefront.database.tenant_repo import TenantRepository
from storefront.models.models import InventoryAdjustmentType, InventoryHistory, Product, ProductVariant, Tenant
from storefront.models.plan_limits import ResourceType
from storefront.schemas.products import InventoryAdjustRequest, ProductCreate, VariantCreate, VariantUpdate
from storefront.services.quota_ledger import QuotaLedger
from storefront.services.stock_reconciler import StockReconciler
from storefront.utils.exceptions import NotFoundException, ValidationException

logger = logging.getLogger(__name__)

# Key in tenants.data
LOW_STOCK_THRESHOLD_KEY = "lowStockThreshold"


@dataclass
class LowStockReport:
    threshold: int
    products: list[Product] = field(default_factory=list)
    variants: list[tuple[ProductVariant, Product]] = field(default_factory=list)

    @property
    def total_alerts(self) -> int:
        return len(self.products) + len(self.variants)


class CatalogService:
    """Service for product and variant operations."""

    @staticmethod
    def _slugify(text: str) -> str:
        """Convert text to URL-friendly slug."""
        text = text.lower().strip()
        text = re.sub(r"[^\w\s-]", "", text)
        text = re.sub(r"[-\s]+", "-", text).strip("-")
        return text[:100] or "product"

    @staticmethod
    async def _generate_unique_slug(db: AsyncSession, tenant_id: uuid.UUID, base_slug: str) -> str:
        """Generate a slug unique within the tenant."""
        existing = await ProductRepository.get_existing_slugs(db, tenant_id, base_slug)
        if base_slug not in existing:
            return base_slug
        i = 2
        while True:
            cand = f"{base_slug}-{i}"
            if cand not in existing:
                return cand
            i += 1

    @staticmethod
    async def create_product(
        db: AsyncSession,
        tenant: Tenant,
        payload: ProductCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> Product:
        """
        Create a product if the tenant's plan allows one more.

        Raises:
            NoActivePlan: tenant has no active plan
            QuotaExceeded: product limit reached
        """
        if payload.sale_price is not None and payload.sale_price >= payload.price:
            raise ValidationException("Sale price must be less than price")
        if payload.stock_quantity < 0:
            raise ValidationException("Stock quantity must be non-negative")

        # Holds the tenant lock until commit
        await QuotaLedger.require(db, tenant, ResourceType.PRODUCT)

        # Slugs are picked under the tenant lock so concurrent creations never collide
        base_slug = CatalogService._slugify(payload.name)
        slug = await CatalogService._generate_unique_slug(db, tenant.id, base_slug)

        product = Product(
            tenant_id=tenant.id,
            name=payload.name,
            slug=slug,
            sku=payload.sku,
            description=payload.description,
            price=payload.price,
            sale_price=payload.sale_price,
            stock_quantity=payload.stock_quantity,
            status=payload.status,
            created_by=user_id,
            variants=[],
        )
        db.add(product)
        await db.commit()

        logger.info("Product %s created for tenant %s", product.id, tenant.id)
        return product

    @staticmethod
    async def delete_product(db: AsyncSession, tenant_id: uuid.UUID, product_id: uuid.UUID) -> None:
        """Hard-delete a product and its variants, freeing one product quota slot."""
        product = await ProductRepository.get_product(db, tenant_id, product_id, for_update=True)
        if product is None:
            raise NotFoundException("Product not found")

        await db.delete(product)
        await db.commit()
        logger.info("Product %s deleted for tenant %s", product_id, tenant_id)

    @staticmethod
    async def get_product(db: AsyncSession, tenant_id: uuid.UUID, product_id: uuid.UUID) -> Product:
        product = await ProductRepository.get_product(db, tenant_id, product_id)
        if product is None:
            raise NotFoundException("Product not found")
        return product

    @staticmethod
    async def create_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        payload: VariantCreate,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductVariant:
        variant = await StockReconciler.create_variant(
            db,
            tenant_id,
            product_id,
            stock_quantity=payload.stock_quantity,
            name=payload.name,
            sku=payload.sku,
            price=payload.price,
            user_id=user_id,
        )
        await db.commit()
        return variant

    @staticmethod
    async def update_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: uuid.UUID,
        payload: VariantUpdate,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductVariant:
        variant = await StockReconciler.update_variant(
            db,
            tenant_id,
            product_id,
            variant_id,
            payload.model_dump(exclude_unset=True),
            user_id=user_id,
        )
        await db.commit()
        return variant

    @staticmethod
    async def delete_variant(
        db: AsyncSession, tenant_id: uuid.UUID, product_id: uuid.UUID, variant_id: uuid.UUID
    ) -> int:
        stock = await StockReconciler.delete_variant(db, tenant_id, product_id, variant_id)
        await db.commit()
        return stock

    @staticmethod
    async def sync_product_stock(db: AsyncSession, tenant_id: uuid.UUID, product_id: uuid.UUID) -> Product:
        product = await ProductRepository.get_product(db, tenant_id, product_id)
        if product is None:
            raise NotFoundException("Product not found")
        await StockReconciler.recompute_product_stock(db, product.id)
        await db.commit()
        return product

    @staticmethod
    async def sync_all_product_stocks(db: AsyncSession, tenant_id: Optional[uuid.UUID] = None) -> int:
        count = await StockReconciler.sync_all_product_stocks(db, tenant_id)
        await db.commit()
        logger.info("Synced stock for %s product(s)", count)
        return count

    @staticmethod
    async def adjust_inventory(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        payload: InventoryAdjustRequest,
        user_id: Optional[uuid.UUID] = None,
    ) -> tuple[InventoryHistory, int]:
        """Apply a manual adjustment. Returns the history row and the product's resulting stock."""
        try:
            product_id = uuid.UUID(payload.product_id) if payload.product_id else None
            variant_id = uuid.UUID(payload.variant_id) if payload.variant_id else None
        except ValueError:
            raise ValidationException("Invalid product or variant id") from None

        entry = await StockReconciler.adjust_inventory(
            db,
            tenant_id,
            payload.adjustment_type,
            payload.quantity,
            product_id=product_id,
            variant_id=variant_id,
            reason=payload.reason,
            notes=payload.notes,
            user_id=user_id,
        )
        product = await ProductRepository.get_product(db, tenant_id, entry.product_id)
        await db.commit()
        return entry, product.stock_quantity if product else 0

    @staticmethod
    async def inventory_history(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
        product_id: Optional[uuid.UUID] = None,
        variant_id: Optional[uuid.UUID] = None,
        adjustment_type: Optional[InventoryAdjustmentType] = None,
    ) -> tuple[list[tuple[InventoryHistory, Optional[str]]], int]:
        return await InventoryRepository.list_history(
            db,
            tenant_id,
            page=page,
            page_size=page_size,
            product_id=product_id,
            variant_id=variant_id,
            adjustment_type=adjustment_type,
        )

    @staticmethod
    def get_low_stock_threshold(tenant: Tenant) -> int:
        """Tenant's low-stock threshold, falling back to the configured default."""
        value = tenant.settings_data.get(LOW_STOCK_THRESHOLD_KEY)
        # bool is an int subclass; a stored true/false is not a threshold
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        return settings.LOW_STOCK_THRESHOLD

    @staticmethod
    async def set_low_stock_threshold(db: AsyncSession, tenant_id: uuid.UUID, threshold: int) -> int:
        if threshold < 0:
            raise ValidationException("Threshold must be non-negative")

        tenant = await TenantRepository.get_tenant(db, tenant_id, for_update=True)
        if tenant is None:
            raise NotFoundException("Tenant not found")

        tenant.update_settings(**{LOW_STOCK_THRESHOLD_KEY: threshold})
        await db.commit()
        logger.info("Low stock threshold for tenant %s set to %s", tenant_id, threshold)
        return threshold

    @staticmethod
    async def low_stock_alerts(db: AsyncSession, tenant: Tenant, threshold: Optional[int] = None) -> LowStockReport:
        """
        Variants, and products without variants, at or below the threshold.

        Args:
            threshold: Overrides the tenant's stored threshold for this query
        """
        if threshold is None:
            threshold = CatalogService.get_low_stock_threshold(tenant)
        elif threshold < 0:
            raise ValidationException("Threshold must be non-negative")

        products = await InventoryRepository.list_low_stock_products(db, tenant.id, threshold)
        variants = await InventoryRepository.list_low_stock_variants(db, tenant.id, threshold)
        return LowStockReport(threshold=threshold, products=products, variants=variants)
