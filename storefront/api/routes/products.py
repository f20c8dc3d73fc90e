"""Product and variant routes."""

import uuid
from typing import Any

from fastapi import APIRouter, status

from storefront.api.deps import DB, CurrentTenant, CurrentUserId
from storefront.models.models import Product, ProductVariant
from storefront.schemas.products import (
    ProductCreate,
    ProductResponse,
    VariantCreate,
    VariantResponse,
    VariantUpdate,
)
from storefront.services.catalog_service import CatalogService
from storefront.utils.envelopes import api_success
from storefront.utils.exceptions import NotFoundException

router = APIRouter(tags=["products"])


def _parse_id(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        raise NotFoundException(f"{label} not found")


def variant_to_response(variant: ProductVariant) -> dict[str, Any]:
    return VariantResponse(
        id=str(variant.id),
        product_id=str(variant.product_id),
        name=variant.name,
        sku=variant.sku,
        price=variant.price,
        stock_quantity=variant.stock_quantity,
    ).model_dump(mode="json")


def product_to_response(product: Product) -> dict[str, Any]:
    return ProductResponse(
        id=str(product.id),
        name=product.name,
        slug=product.slug,
        sku=product.sku,
        price=product.price,
        sale_price=product.sale_price,
        stock_quantity=product.stock_quantity,
        status=product.status,
        variants=[variant_to_response(v) for v in product.variants],
        created_at=product.created_at,
        updated_at=product.updated_at,
    ).model_dump(mode="json")


@router.post("/products", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, tenant: CurrentTenant, db: DB, user_id: CurrentUserId):
    """Create a product; refused once the plan's product limit is reached."""
    product = await CatalogService.create_product(db, tenant, payload, user_id=user_id)
    return api_success(product_to_response(product))


@router.get("/products/{product_id}", response_model=dict)
async def get_product(product_id: str, tenant: CurrentTenant, db: DB):
    product = await CatalogService.get_product(db, tenant.id, _parse_id(product_id, "Product"))
    return api_success(product_to_response(product))


@router.delete("/products/{product_id}", response_model=dict)
async def delete_product(product_id: str, tenant: CurrentTenant, db: DB):
    await CatalogService.delete_product(db, tenant.id, _parse_id(product_id, "Product"))
    return api_success({"deleted": True, "id": product_id})


@router.post("/products/{product_id}/variants", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_variant(
    product_id: str,
    payload: VariantCreate,
    tenant: CurrentTenant,
    db: DB,
    user_id: CurrentUserId,
):
    variant = await CatalogService.create_variant(
        db, tenant.id, _parse_id(product_id, "Product"), payload, user_id=user_id
    )
    return api_success(variant_to_response(variant))


@router.patch("/products/{product_id}/variants/{variant_id}", response_model=dict)
async def update_variant(
    product_id: str,
    variant_id: str,
    payload: VariantUpdate,
    tenant: CurrentTenant,
    db: DB,
    user_id: CurrentUserId,
):
    variant = await CatalogService.update_variant(
        db,
        tenant.id,
        _parse_id(product_id, "Product"),
        _parse_id(variant_id, "Variant"),
        payload,
        user_id=user_id,
    )
    return api_success(variant_to_response(variant))


@router.delete("/products/{product_id}/variants/{variant_id}", response_model=dict)
async def delete_variant(product_id: str, variant_id: str, tenant: CurrentTenant, db: DB):
    stock = await CatalogService.delete_variant(
        db, tenant.id, _parse_id(product_id, "Product"), _parse_id(variant_id, "Variant")
    )
    return api_success({"deleted": True, "id": variant_id, "product_stock_quantity": stock})


@router.post("/products/{product_id}/sync-stock", response_model=dict)
async def sync_product_stock(product_id: str, tenant: CurrentTenant, db: DB):
    """Recompute a product's stock from its variants."""
    product = await CatalogService.sync_product_stock(db, tenant.id, _parse_id(product_id, "Product"))
    return api_success(product_to_response(product))
