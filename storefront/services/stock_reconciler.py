"""Stock Reconciler.

Sole write path for ``Product.stock_quantity`` and
``ProductVariant.stock_quantity``. A product with variants always carries the
sum of its variants' stock; a product without variants owns its count.

Nothing here commits. Every operation runs inside the caller's transaction
and a raised error means the caller must roll back.

Row locks are always taken products first, then variants, each in ID order.
"""

import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database.products_repo import ProductRepository
from storefront.models.models import (
    InventoryAdjustmentType,
    InventoryHistory,
    Order,
    Product,
    ProductVariant,
)
from storefront.utils.exceptions import InsufficientStock, NotFoundException, ValidationException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockLine:
    """One reservation request: a product, optionally narrowed to a variant."""

    product_id: uuid.UUID
    quantity: int
    variant_id: Optional[uuid.UUID] = None
    name: Optional[str] = None


# Adjustment types that move stock by +quantity / -quantity
_INCREMENTS = {InventoryAdjustmentType.INCREASE, InventoryAdjustmentType.RETURN}
_DECREMENTS = {InventoryAdjustmentType.DECREASE, InventoryAdjustmentType.DAMAGE}


def _history(
    tenant_id: uuid.UUID,
    product_id: uuid.UUID,
    variant_id: Optional[uuid.UUID],
    adjustment_type: InventoryAdjustmentType,
    before: int,
    after: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    order_id: Optional[uuid.UUID] = None,
    user_id: Optional[uuid.UUID] = None,
) -> InventoryHistory:
    return InventoryHistory(
        tenant_id=tenant_id,
        product_id=product_id,
        variant_id=variant_id,
        order_id=order_id,
        adjustment_type=adjustment_type,
        quantity_before=before,
        quantity_after=after,
        quantity_change=after - before,
        reason=reason,
        notes=notes,
        created_by=user_id,
    )


class StockReconciler:
    """Keeps product and variant stock counts consistent."""

    @staticmethod
    async def recompute_product_stock(db: AsyncSession, product_id: uuid.UUID) -> int:
        """
        Overwrite a product's stock with the sum of its variants' stock.

        A product with zero variants keeps its own count.

        Returns:
            The product's stock after recomputation
        """
        result = await db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundException("Product not found")

        # Aggregate runs after autoflush so pending variant edits are counted
        variant_count, total = await ProductRepository.get_variant_stock_totals(db, product_id)
        if variant_count == 0:
            return product.stock_quantity

        if product.stock_quantity != total:
            logger.debug("Product %s stock %s -> %s", product_id, product.stock_quantity, total)
            product.stock_quantity = total
        return total

    @staticmethod
    async def reserve_stock(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        lines: Iterable[StockLine],
        order_id: Optional[uuid.UUID] = None,
    ) -> list[InventoryHistory]:
        """
        Decrement stock for every line, all or nothing.

        Quantities for the same product/variant are summed before checking.
        If any line is short, InsufficientStock is raised and no count is
        changed.

        Returns:
            The ``sale`` history rows written, one per product/variant
        """
        wanted: "OrderedDict[tuple[uuid.UUID, Optional[uuid.UUID]], int]" = OrderedDict()
        names: dict[tuple[uuid.UUID, Optional[uuid.UUID]], Optional[str]] = {}
        for line in lines:
            if line.quantity <= 0:
                raise ValidationException("Quantity must be a positive integer")
            key = (line.product_id, line.variant_id)
            wanted[key] = wanted.get(key, 0) + line.quantity
            names.setdefault(key, line.name)

        if not wanted:
            return []

        products = await ProductRepository.lock_products(db, (pid for pid, _ in wanted))
        variants = await ProductRepository.lock_variants(db, (vid for _, vid in wanted if vid is not None))

        # Check everything before touching anything
        targets: list[tuple[Product, Optional[ProductVariant], int]] = []
        for (product_id, variant_id), quantity in wanted.items():
            product = products.get(product_id)
            if product is None or product.tenant_id != tenant_id:
                raise NotFoundException(f"Product {product_id} not found")

            if variant_id is not None:
                variant = variants.get(variant_id)
                if variant is None or variant.product_id != product.id:
                    raise NotFoundException(f"Variant {variant_id} not found for product {product.name}")
                available = variant.stock_quantity
                label = names[(product_id, variant_id)] or f"{product.name} ({variant.name or variant.sku})"
            else:
                if product.variants:
                    raise ValidationException(f"Product '{product.name}' requires a variant selection")
                variant = None
                available = product.stock_quantity
                label = names[(product_id, variant_id)] or product.name

            if quantity > available:
                raise InsufficientStock(label, quantity, available)
            targets.append((product, variant, quantity))

        history: list[InventoryHistory] = []
        recompute: list[uuid.UUID] = []
        for product, variant, quantity in targets:
            row = variant if variant is not None else product
            before = row.stock_quantity
            row.stock_quantity = before - quantity
            entry = _history(
                tenant_id,
                product.id,
                variant.id if variant is not None else None,
                InventoryAdjustmentType.SALE,
                before,
                row.stock_quantity,
                reason="Order placed",
                order_id=order_id,
            )
            db.add(entry)
            history.append(entry)
            if variant is not None and product.id not in recompute:
                recompute.append(product.id)

        for product_id in recompute:
            await StockReconciler.recompute_product_stock(db, product_id)

        return history

    @staticmethod
    async def release_stock(db: AsyncSession, order: Order, user_id: Optional[uuid.UUID] = None) -> bool:
        """
        Return an order's reserved stock.

        Idempotent: an order whose stock was already released is left alone.

        Returns:
            True if stock was released by this call
        """
        if order.stock_released:
            return False

        returned: "OrderedDict[tuple[uuid.UUID, Optional[uuid.UUID]], int]" = OrderedDict()
        for item in order.items:
            if item.product_id is None:
                # Product was deleted after the order was placed
                continue
            key = (item.product_id, item.variant_id)
            returned[key] = returned.get(key, 0) + item.quantity

        products = await ProductRepository.lock_products(db, (pid for pid, _ in returned))
        variants = await ProductRepository.lock_variants(db, (vid for _, vid in returned if vid is not None))

        recompute: list[uuid.UUID] = []
        for (product_id, variant_id), quantity in returned.items():
            product = products.get(product_id)
            if product is None:
                continue

            if variant_id is not None:
                target = variants.get(variant_id)
                if target is None:
                    continue
                if product.id not in recompute:
                    recompute.append(product.id)
            else:
                if product.variants:
                    logger.warning(
                        "Order %s: not returning %s unit(s) of product %s, it now has variants",
                        order.order_number,
                        quantity,
                        product.id,
                    )
                    continue
                target = product

            before = target.stock_quantity
            target.stock_quantity = before + quantity
            db.add(
                _history(
                    order.tenant_id,
                    product.id,
                    variant_id,
                    InventoryAdjustmentType.RETURN,
                    before,
                    target.stock_quantity,
                    reason="Order cancelled",
                    order_id=order.id,
                    user_id=user_id,
                )
            )

        for product_id in recompute:
            await StockReconciler.recompute_product_stock(db, product_id)

        order.stock_released = True
        logger.info("Released stock for order %s", order.order_number)
        return True

    @staticmethod
    async def create_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        stock_quantity: int = 0,
        name: Optional[str] = None,
        sku: Optional[str] = None,
        price: Optional[Decimal] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductVariant:
        if stock_quantity < 0:
            raise ValidationException("Stock quantity must be non-negative")

        product = await ProductRepository.get_product(db, tenant_id, product_id, for_update=True)
        if product is None:
            raise NotFoundException("Product not found")

        variant = ProductVariant(
            tenant_id=tenant_id,
            product_id=product.id,
            name=name,
            sku=sku,
            price=price,
            stock_quantity=stock_quantity,
            created_by=user_id,
        )
        product.variants.append(variant)
        await db.flush()

        await StockReconciler.recompute_product_stock(db, product.id)
        return variant

    @staticmethod
    async def update_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: uuid.UUID,
        changes: dict,
        user_id: Optional[uuid.UUID] = None,
    ) -> ProductVariant:
        """Apply field changes to a variant; stock changes are recorded and rolled up."""
        product = await ProductRepository.get_product(db, tenant_id, product_id, for_update=True)
        if product is None:
            raise NotFoundException("Product not found")
        variant = await ProductRepository.get_variant(db, tenant_id, variant_id, product_id=product.id, for_update=True)
        if variant is None:
            raise NotFoundException("Variant not found")

        for field in ("name", "sku", "price"):
            if field in changes:
                setattr(variant, field, changes[field])

        new_stock = changes.get("stock_quantity")
        if new_stock is not None and new_stock != variant.stock_quantity:
            if new_stock < 0:
                raise ValidationException("Stock quantity must be non-negative")
            before = variant.stock_quantity
            variant.stock_quantity = new_stock
            db.add(
                _history(
                    tenant_id,
                    product.id,
                    variant.id,
                    InventoryAdjustmentType.SET,
                    before,
                    new_stock,
                    reason="Variant updated",
                    user_id=user_id,
                )
            )

        variant.updated_by = user_id
        await StockReconciler.recompute_product_stock(db, product.id)
        return variant

    @staticmethod
    async def delete_variant(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        product_id: uuid.UUID,
        variant_id: uuid.UUID,
    ) -> int:
        """Delete a variant and return the product's recomputed stock."""
        product = await ProductRepository.get_product(db, tenant_id, product_id, for_update=True)
        if product is None:
            raise NotFoundException("Product not found")

        variant = next((v for v in product.variants if v.id == variant_id), None)
        if variant is None:
            raise NotFoundException("Variant not found")

        product.variants.remove(variant)
        await db.flush()

        return await StockReconciler.recompute_product_stock(db, product.id)

    @staticmethod
    async def adjust_inventory(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        adjustment_type: InventoryAdjustmentType,
        quantity: int,
        product_id: Optional[uuid.UUID] = None,
        variant_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> InventoryHistory:
        """
        Manually adjust stock of a variant, or of a product without variants.

        ``set`` replaces the count; ``increase``/``return`` add; ``decrease``/``damage``
        subtract and are rejected (not clamped) if they would go below zero.
        """
        if (product_id is None) == (variant_id is None):
            raise ValidationException("Exactly one of product_id or variant_id is required")
        if adjustment_type == InventoryAdjustmentType.SALE:
            raise ValidationException("Sales are recorded by checkout, not manual adjustments")
        if quantity < 0 or (quantity == 0 and adjustment_type != InventoryAdjustmentType.SET):
            raise ValidationException("Quantity must be a positive integer")

        variant: Optional[ProductVariant] = None
        if variant_id is not None:
            lookup = await ProductRepository.get_variant(db, tenant_id, variant_id)
            if lookup is None:
                raise NotFoundException("Variant not found")
            product_id = lookup.product_id

        product = await ProductRepository.get_product(db, tenant_id, product_id, for_update=True)
        if product is None:
            raise NotFoundException("Product not found")

        if variant_id is not None:
            variant = await ProductRepository.get_variant(db, tenant_id, variant_id, for_update=True)
            if variant is None:
                # Deleted between the lookup and the lock
                raise NotFoundException("Variant not found")
            target_name = f"{product.name} ({variant.name or variant.sku})"
            before = variant.stock_quantity
        else:
            if product.variants:
                raise ValidationException(
                    "Product has variants; adjust the variant stock instead",
                    details={"product_id": str(product.id)},
                )
            target_name = product.name
            before = product.stock_quantity

        if adjustment_type == InventoryAdjustmentType.SET:
            after = quantity
        elif adjustment_type in _INCREMENTS:
            after = before + quantity
        elif adjustment_type in _DECREMENTS:
            if quantity > before:
                raise InsufficientStock(target_name, quantity, before)
            after = before - quantity
        else:
            raise ValidationException(f"Unsupported adjustment type: {adjustment_type.value}")

        if variant is not None:
            variant.stock_quantity = after
        else:
            product.stock_quantity = after

        entry = _history(
            tenant_id,
            product.id,
            variant.id if variant is not None else None,
            adjustment_type,
            before,
            after,
            reason=reason,
            notes=notes,
            user_id=user_id,
        )
        db.add(entry)

        if variant is not None:
            await StockReconciler.recompute_product_stock(db, product.id)

        logger.info(
            "Inventory %s on %s: %s -> %s",
            adjustment_type.value,
            target_name,
            before,
            after,
        )
        return entry

    @staticmethod
    async def sync_all_product_stocks(db: AsyncSession, tenant_id: Optional[uuid.UUID] = None) -> int:
        """Recompute every product that has variants. Returns the number of products synced."""
        product_ids = await ProductRepository.get_product_ids_with_variants(db, tenant_id)
        for product_id in sorted(product_ids, key=str):
            await StockReconciler.recompute_product_stock(db, product_id)
        return len(product_ids)
