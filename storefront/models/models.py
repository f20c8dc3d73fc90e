from __future__ import annotations

import enum
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TIMESTAMP

from storefront.models.base import Base
from storefront.models.plan_limits import PlanLimits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive timestamps
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _str_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Persist enum values ("pending"), not member names ("PENDING")
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


Money = Numeric(12, 2)


class UUIDMixin:
    id: Mapped[uuid.UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class AuditMixin:
    """Audit fields that exist in all tables: created_by, created_date, updated_by, updated_date"""
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(PGUUID(as_uuid=True))
    created_date: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(PGUUID(as_uuid=True))
    updated_date: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), onupdate=utcnow)


class TimestampMixin(AuditMixin):
    """Map created_at/updated_at to created_date/updated_date"""
    @property
    def created_at(self) -> datetime:
        return self.created_date

    @property
    def updated_at(self) -> Optional[datetime]:
        return self.updated_date


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"
    ARCHIVED = "archived"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    PESAPAL = "pesapal"
    PAYPAL = "paypal"
    CASH_ON_DELIVERY = "cash_on_delivery"


class CouponDiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class InventoryAdjustmentType(str, enum.Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    SET = "set"
    SALE = "sale"
    RETURN = "return"
    DAMAGE = "damage"


class Plan(UUIDMixin, TimestampMixin, Base):
    """Subscription tier with price, duration and per-resource quotas.

    ``features`` is TEXT in the database holding a JSON feature map. It is
    parsed into :class:`PlanLimits` on first access and cached on the instance.
    """

    __tablename__ = "tbl_price_plans"

    code: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    duration_months: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    # features is TEXT in database, storing JSON as string
    features: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    @property
    def limits(self) -> PlanLimits:
        cached = getattr(self, "_limits", None)
        if cached is None:
            raw = json.loads(self.features) if self.features else {}
            cached = PlanLimits.from_features(raw)
            self._limits = cached
        return cached

    def set_features(self, features: dict[str, Any]) -> None:
        # Validate before persisting so a bad admin update never reaches the table
        limits = PlanLimits.from_features(features)
        self.features = json.dumps(features)
        self._limits = limits


class Tenant(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_tenants"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_price_plans.id", ondelete="SET NULL")
    )
    plan_expires_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    # Store settings (e.g. lowStockThreshold). TEXT storing JSON.
    data: Mapped[Optional[str]] = mapped_column(Text)

    @property
    def settings_data(self) -> dict[str, Any]:
        return json.loads(self.data) if self.data else {}

    def update_settings(self, **values: Any) -> None:
        merged = self.settings_data
        merged.update(values)
        self.data = json.dumps(merged)


class Product(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_products_tenant_slug"),
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("sale_price IS NULL OR sale_price < price", name="ck_products_sale_below_price"),
        Index("ix_products_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(Money)
    # Authoritative only while the product has no variants
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    status: Mapped[ProductStatus] = mapped_column(
        _str_enum(ProductStatus, "product_status"),
        nullable=False,
        default=ProductStatus.DRAFT,
        server_default=text("'draft'"),
    )

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )


class ProductVariant(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_product_variants"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_variants_stock_non_negative"),
        Index("ix_variants_product", "product_id"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_products.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(Text)
    sku: Mapped[Optional[str]] = mapped_column(String)
    price: Mapped[Optional[Decimal]] = mapped_column(Money)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    product: Mapped[Product] = relationship("Product", back_populates="variants")


class Coupon(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_coupons"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_coupons_tenant_code"),
        CheckConstraint("value > 0", name="ck_coupons_value_positive"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    discount_type: Mapped[CouponDiscountType] = mapped_column(
        _str_enum(CouponDiscountType, "coupon_discount_type"), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    min_order_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    starts_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    expires_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))


class Order(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        CheckConstraint(
            "payment_status <> 'refunded' OR status IN ('cancelled', 'refunded')",
            name="ck_orders_refund_requires_cancel",
        ),
        Index("ix_orders_tenant_status", "tenant_id", "status"),
        Index("ix_orders_status_payment_created", "status", "payment_status", "created_date"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    order_number: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        _str_enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        server_default=text("'pending'"),
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _str_enum(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        server_default=text("'pending'"),
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(_str_enum(PaymentMethod, "payment_method"), nullable=False)
    payment_reference: Mapped[Optional[str]] = mapped_column(String)
    transaction_id: Mapped[Optional[str]] = mapped_column(String)

    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[str] = mapped_column(Text, nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(Text)
    # Addresses are TEXT in database, storing JSON as string
    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)
    billing_address: Mapped[str] = mapped_column(Text, nullable=False)

    subtotal_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"), server_default=text("0"))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    tracking_number: Mapped[Optional[str]] = mapped_column(String)
    shipping_carrier: Mapped[Optional[str]] = mapped_column(String)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text)
    stock_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    # Set while a refund call to the provider is outstanding; cleared when it fails
    refund_requested_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True))

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
        lazy="selectin",
    )

    @property
    def shipping_address_data(self) -> dict[str, Any]:
        return json.loads(self.shipping_address) if self.shipping_address else {}

    @property
    def billing_address_data(self) -> dict[str, Any]:
        return json.loads(self.billing_address) if self.billing_address else {}


class OrderItem(UUIDMixin, Base):
    """Line item snapshot taken at order creation; never repriced."""

    __tablename__ = "tbl_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        Index("ix_order_items_order", "order_id", "position"),
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_orders.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_products.id", ondelete="SET NULL")
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_product_variants.id", ondelete="SET NULL")
    )
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money, nullable=False)

    order: Mapped[Order] = relationship("Order", back_populates="items")


class OrderEvent(UUIDMixin, AuditMixin, Base):
    """Audit note for an order status or payment status change."""

    __tablename__ = "tbl_order_events"
    __table_args__ = (Index("ix_order_events_order", "order_id", "created_date"),)

    order_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_orders.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String)
    to_status: Mapped[Optional[str]] = mapped_column(String)
    from_payment_status: Mapped[Optional[str]] = mapped_column(String)
    to_payment_status: Mapped[Optional[str]] = mapped_column(String)
    note: Mapped[Optional[str]] = mapped_column(Text)
    # metadata is TEXT in database, storing JSON as string
    event_metadata: Mapped[Optional[str]] = mapped_column("metadata", Text)


class InventoryHistory(UUIDMixin, AuditMixin, Base):
    __tablename__ = "tbl_inventory_history"
    __table_args__ = (Index("ix_inventory_history_product", "tenant_id", "product_id", "created_date"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_products.id", ondelete="SET NULL")
    )
    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_product_variants.id", ondelete="SET NULL")
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_orders.id", ondelete="SET NULL")
    )
    adjustment_type: Mapped[InventoryAdjustmentType] = mapped_column(
        _str_enum(InventoryAdjustmentType, "inventory_adjustment_type"), nullable=False
    )
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)


# Tenant content that only matters here for quota counting


class Page(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_pages"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)


class Blog(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_blogs"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)


class StaffMember(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_staff_members"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_staff_tenant_email"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="staff", server_default=text("'staff'"))


class Customer(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "tbl_customers"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_customers_tenant_email"),)

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("tbl_tenants.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text)
