"""Inventory adjustment, history, low-stock alert and settings routes."""

import uuid
from typing import Optional

from fastapi import APIRouter, Query

from storefront.api.deps import DB, CurrentTenant, CurrentUserId
from storefront.models.models import InventoryAdjustmentType
from storefront.schemas.products import (
    InventoryAdjustRequest,
    InventoryAdjustResponse,
    InventoryAlertsResponse,
    InventoryHistoryItem,
    InventorySettings,
    LowStockProduct,
    LowStockVariant,
    StockSyncResponse,
)
from storefront.services.catalog_service import CatalogService
from storefront.utils.envelopes import api_success

router = APIRouter(tags=["inventory"])


@router.post("/inventory/adjust", response_model=dict)
async def adjust_inventory(
    payload: InventoryAdjustRequest,
    tenant: CurrentTenant,
    db: DB,
    user_id: CurrentUserId,
):
    entry, product_stock = await CatalogService.adjust_inventory(db, tenant.id, payload, user_id=user_id)
    return api_success(
        InventoryAdjustResponse(
            id=str(entry.id),
            product_id=str(entry.product_id) if entry.product_id else None,
            variant_id=str(entry.variant_id) if entry.variant_id else None,
            adjustment_type=entry.adjustment_type,
            quantity_before=entry.quantity_before,
            quantity_after=entry.quantity_after,
            quantity_change=entry.quantity_change,
            product_stock_quantity=product_stock,
        ).model_dump(mode="json")
    )


@router.post("/inventory/sync-stocks", response_model=dict)
async def sync_stocks(tenant: CurrentTenant, db: DB):
    """Recompute stock for every product of this tenant that has variants."""
    count = await CatalogService.sync_all_product_stocks(db, tenant.id)
    return api_success(StockSyncResponse(synced_products=count).model_dump())


@router.get("/inventory/history", response_model=dict)
async def inventory_history(
    tenant: CurrentTenant,
    db: DB,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    product_id: Optional[uuid.UUID] = None,
    variant_id: Optional[uuid.UUID] = None,
    adjustment_type: Optional[InventoryAdjustmentType] = None,
):
    """Stock movements (sales, returns, manual adjustments), newest first."""
    rows, total = await CatalogService.inventory_history(
        db,
        tenant.id,
        page=page,
        page_size=page_size,
        product_id=product_id,
        variant_id=variant_id,
        adjustment_type=adjustment_type,
    )

    items = [
        InventoryHistoryItem(
            id=str(entry.id),
            product_id=str(entry.product_id) if entry.product_id else None,
            product_name=product_name,
            variant_id=str(entry.variant_id) if entry.variant_id else None,
            order_id=str(entry.order_id) if entry.order_id else None,
            adjustment_type=entry.adjustment_type,
            quantity_before=entry.quantity_before,
            quantity_after=entry.quantity_after,
            quantity_change=entry.quantity_change,
            reason=entry.reason,
            notes=entry.notes,
            created_at=entry.created_date,
        )
        for entry, product_name in rows
    ]
    total_pages = (total + page_size - 1) // page_size

    return api_success(
        {
            "items": [item.model_dump(mode="json") for item in items],
            "meta": {
                "page": page,
                "pageSize": page_size,
                "total": total,
                "totalPages": total_pages,
            },
        }
    )


@router.get("/inventory/alerts", response_model=dict)
async def inventory_alerts(
    tenant: CurrentTenant,
    db: DB,
    threshold: Optional[int] = Query(None, ge=0, le=10000),
):
    """Low-stock variants and products; ``threshold`` defaults to the tenant setting."""
    report = await CatalogService.low_stock_alerts(db, tenant, threshold)
    return api_success(
        InventoryAlertsResponse(
            threshold=report.threshold,
            products=[
                LowStockProduct(
                    id=str(p.id),
                    name=p.name,
                    sku=p.sku,
                    status=p.status,
                    stock_quantity=p.stock_quantity,
                )
                for p in report.products
            ],
            variants=[
                LowStockVariant(
                    id=str(v.id),
                    product_id=str(p.id),
                    product_name=p.name,
                    product_sku=p.sku,
                    variant_name=v.name,
                    variant_sku=v.sku,
                    stock_quantity=v.stock_quantity,
                )
                for v, p in report.variants
            ],
            total_alerts=report.total_alerts,
        ).model_dump(mode="json")
    )


@router.get("/inventory/settings", response_model=dict)
async def get_inventory_settings(tenant: CurrentTenant):
    return api_success(InventorySettings(threshold=CatalogService.get_low_stock_threshold(tenant)).model_dump())


@router.put("/inventory/settings", response_model=dict)
async def update_inventory_settings(payload: InventorySettings, tenant: CurrentTenant, db: DB):
    threshold = await CatalogService.set_low_stock_threshold(db, tenant.id, payload.threshold)
    return api_success(InventorySettings(threshold=threshold).model_dump())
