"""Checkout and order schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field

from storefront.models.models import OrderStatus, PaymentMethod, PaymentStatus


class Address(BaseModel):
    """Structured shipping/billing address."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=50)
    address_line_1: str = Field(..., min_length=1, max_length=255)
    address_line_2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=120)
    state: str = Field(..., min_length=1, max_length=120)
    postal_code: str = Field(..., min_length=1, max_length=30)
    country: str = Field(..., min_length=1, max_length=120)


class CartItem(BaseModel):
    product_id: str = Field(..., description="Product ID (UUID)")
    variant_id: Optional[str] = Field(None, description="Variant ID (UUID) when the product has variants")
    quantity: int = Field(..., ge=1)


class CheckoutRequest(BaseModel):
    items: list[CartItem] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod
    coupon_code: Optional[str] = Field(None, max_length=64)
    notes: Optional[str] = Field(None, max_length=2000)


class OrderItemResponse(BaseModel):
    id: str
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: str
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderResponse(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    customer_name: str
    customer_email: str
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    subtotal_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    cancellation_reason: Optional[str] = None
    stock_released: bool
    refund_pending: bool = False
    items: list[OrderItemResponse]
    created_at: datetime
    updated_at: Optional[datetime] = None


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment_reference: Optional[str] = Field(None, description="Provider reference used to confirm payment out-of-band")
    payment_error: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)
    tracking_number: Optional[str] = Field(None, max_length=120)
    shipping_carrier: Optional[str] = Field(None, max_length=120)
    reason: Optional[str] = Field(None, max_length=500)


class CancelOrderRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)


class ReservationSweepResponse(BaseModel):
    expired_orders: list[str]
