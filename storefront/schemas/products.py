"""Product, variant and inventory schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from storefront.models.models import InventoryAdjustmentType, ProductStatus


# === Products ===


class ProductCreate(BaseModel):
    """Product creation request."""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    sku: Optional[str] = Field(None, max_length=100)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    sale_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    stock_quantity: int = Field(0, ge=0)
    status: ProductStatus = ProductStatus.DRAFT

    @model_validator(mode="after")
    def _sale_below_price(self) -> "ProductCreate":
        if self.sale_price is not None and self.sale_price >= self.price:
            raise ValueError("sale_price must be less than price")
        return self


class VariantResponse(BaseModel):
    id: str
    product_id: str
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    stock_quantity: int


class ProductResponse(BaseModel):
    id: str
    name: str
    slug: str
    sku: Optional[str] = None
    price: Decimal
    sale_price: Optional[Decimal] = None
    stock_quantity: int
    status: ProductStatus
    variants: list[VariantResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None


# === Variants ===


class VariantCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    sku: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    stock_quantity: int = Field(0, ge=0)


class VariantUpdate(BaseModel):
    """Variant update request (all fields optional)."""

    name: Optional[str] = Field(None, max_length=200)
    sku: Optional[str] = Field(None, max_length=100)
    price: Optional[Decimal] = Field(None, gt=0, max_digits=12, decimal_places=2)
    stock_quantity: Optional[int] = Field(None, ge=0)


# === Inventory ===


class InventoryAdjustRequest(BaseModel):
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    adjustment_type: InventoryAdjustmentType
    quantity: int = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "InventoryAdjustRequest":
        if not self.product_id and not self.variant_id:
            raise ValueError("Either product_id or variant_id must be provided")
        if self.product_id and self.variant_id:
            raise ValueError("Cannot adjust both product and variant inventory at the same time")
        return self


class InventoryAdjustResponse(BaseModel):
    id: str
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    adjustment_type: InventoryAdjustmentType
    quantity_before: int
    quantity_after: int
    quantity_change: int
    product_stock_quantity: int


class StockSyncResponse(BaseModel):
    synced_products: int


class InventoryHistoryItem(BaseModel):
    id: str
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    variant_id: Optional[str] = None
    order_id: Optional[str] = None
    adjustment_type: InventoryAdjustmentType
    quantity_before: int
    quantity_after: int
    quantity_change: int
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class LowStockProduct(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    status: ProductStatus
    stock_quantity: int


class LowStockVariant(BaseModel):
    id: str
    product_id: str
    product_name: str
    product_sku: Optional[str] = None
    variant_name: Optional[str] = None
    variant_sku: Optional[str] = None
    stock_quantity: int


class InventoryAlertsResponse(BaseModel):
    threshold: int
    products: list[LowStockProduct]
    variants: list[LowStockVariant]
    total_alerts: int


class InventorySettings(BaseModel):
    threshold: int = Field(..., ge=0, le=10000, description="Low stock alert threshold")
