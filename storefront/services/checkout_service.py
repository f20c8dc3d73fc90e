"""Checkout Orchestrator: the only path that turns a cart into an order."""

import asyncio
import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.database.orders_repo import CouponRepository, OrderRepository
from storefront.database.products_repo import ProductRepository
from storefront.database.tenant_repo import TenantRepository
from storefront.integrations.payment_providers import PaymentProvider, PaymentProviderError, get_payment_provider
from storefront.models.models import (
    Coupon,
    CouponDiscountType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductStatus,
    as_utc,
    utcnow,
)
from storefront.models.plan_limits import ResourceType
from storefront.services.notification_service import NotificationService
from storefront.services.quota_ledger import QuotaLedger
from storefront.services.stock_reconciler import StockLine, StockReconciler
from storefront.utils.exceptions import (
    InvalidCoupon,
    NotFoundException,
    PersistenceConflict,
    ValidationException,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ORDER_NUMBER_ATTEMPTS = 10


@dataclass(frozen=True)
class CartLine:
    product_id: uuid.UUID
    quantity: int
    variant_id: Optional[uuid.UUID] = None


@dataclass
class CheckoutResult:
    order: Order
    payment_reference: Optional[str] = None
    payment_error: Optional[str] = None


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _parse_uuid(value: Any, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationException(f"Invalid {label}: {value}") from None


def to_cart_lines(items: Sequence[Any]) -> list[CartLine]:
    """Normalise request items (dicts or objects with product_id/variant_id/quantity)."""
    lines = []
    for item in items:
        get = item.get if isinstance(item, dict) else lambda key, default=None: getattr(item, key, default)
        quantity = get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationException("Quantity must be a positive integer")
        variant_id = get("variant_id")
        lines.append(
            CartLine(
                product_id=_parse_uuid(get("product_id"), "product id"),
                quantity=quantity,
                variant_id=_parse_uuid(variant_id, "variant id") if variant_id else None,
            )
        )
    return lines


async def generate_order_number(db: AsyncSession, tenant_id: uuid.UUID, now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-NNNNNN, unique within the tenant."""
    now = now or utcnow()
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = f"ORD-{now:%Y%m%d}-{secrets.randbelow(1_000_000):06d}"
        if not await OrderRepository.order_number_exists(db, tenant_id, candidate):
            return candidate
    raise PersistenceConflict("Could not allocate a unique order number")


class CheckoutService:
    """Cart to committed order, then payment initiation."""

    @staticmethod
    def _coupon_discount(coupon: Coupon, subtotal: Decimal, now: datetime) -> Decimal:
        code = coupon.code
        if not coupon.is_active:
            raise InvalidCoupon(code, "is not active")
        starts_at = as_utc(coupon.starts_at)
        if starts_at is not None and starts_at > now:
            raise InvalidCoupon(code, "is not valid yet")
        expires_at = as_utc(coupon.expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidCoupon(code, "has expired")
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise InvalidCoupon(code, "has reached its usage limit")
        if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
            raise InvalidCoupon(code, f"requires a minimum order of {coupon.min_order_amount}")

        if coupon.discount_type == CouponDiscountType.PERCENTAGE:
            discount = subtotal * Decimal(coupon.value) / Decimal(100)
        else:
            discount = Decimal(coupon.value)
        return _money(min(discount, subtotal))

    @staticmethod
    async def _place_order(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        lines: list[CartLine],
        shipping_address: dict[str, Any],
        billing_address: Optional[dict[str, Any]],
        payment_method: PaymentMethod,
        coupon_code: Optional[str],
        notes: Optional[str],
        user_id: Optional[uuid.UUID],
    ) -> Order:
        """Quota check, stock reservation, pricing and order insert in one transaction."""
        tenant = await TenantRepository.get_tenant(db, tenant_id)
        if tenant is None:
            raise NotFoundException("Tenant not found")

        # Locks the tenant row until commit
        await QuotaLedger.require(db, tenant, ResourceType.ORDER)

        products = await ProductRepository.lock_products(db, (line.product_id for line in lines))
        variants = await ProductRepository.lock_variants(
            db, (line.variant_id for line in lines if line.variant_id is not None)
        )

        items: list[OrderItem] = []
        stock_lines: list[StockLine] = []
        subtotal = Decimal("0")
        for position, line in enumerate(lines):
            product = products.get(line.product_id)
            if product is None or product.tenant_id != tenant_id:
                raise NotFoundException(f"Product {line.product_id} not found")
            if product.status != ProductStatus.ACTIVE:
                raise ValidationException(f"Product '{product.name}' is not available for purchase")

            variant = None
            if line.variant_id is not None:
                variant = variants.get(line.variant_id)
                if variant is None or variant.product_id != product.id:
                    raise NotFoundException(f"Variant {line.variant_id} not found for product '{product.name}'")
            elif product.variants:
                raise ValidationException(f"Product '{product.name}' requires a variant selection")

            if variant is not None and variant.price is not None:
                unit_price = Decimal(variant.price)
            elif product.sale_price is not None:
                unit_price = Decimal(product.sale_price)
            else:
                unit_price = Decimal(product.price)
            unit_price = _money(unit_price)
            line_total = _money(unit_price * line.quantity)
            subtotal += line_total

            name = product.name if variant is None else f"{product.name} ({variant.name or variant.sku})"
            items.append(
                OrderItem(
                    position=position,
                    product_id=product.id,
                    variant_id=variant.id if variant is not None else None,
                    product_name=name,
                    sku=(variant.sku if variant is not None and variant.sku else product.sku),
                    quantity=line.quantity,
                    unit_price=unit_price,
                    line_total=line_total,
                )
            )
            stock_lines.append(
                StockLine(product_id=product.id, variant_id=line.variant_id, quantity=line.quantity, name=name)
            )

        history = await StockReconciler.reserve_stock(db, tenant_id, stock_lines)

        discount = Decimal("0")
        applied_code = None
        if coupon_code and coupon_code.strip():
            applied_code = coupon_code.strip()
            coupon = await CouponRepository.get_by_code(db, tenant_id, applied_code, for_update=True)
            if coupon is None:
                raise InvalidCoupon(applied_code, "does not exist")
            discount = CheckoutService._coupon_discount(coupon, subtotal, utcnow())
            coupon.used_count += 1
            applied_code = coupon.code

        order_number = await generate_order_number(db, tenant_id)
        billing = billing_address or shipping_address
        order = Order(
            tenant_id=tenant_id,
            order_number=order_number,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            payment_method=payment_method,
            customer_name=shipping_address.get("name", ""),
            customer_email=shipping_address.get("email", ""),
            customer_phone=shipping_address.get("phone"),
            shipping_address=json.dumps(shipping_address),
            billing_address=json.dumps(billing),
            subtotal_amount=_money(subtotal),
            discount_amount=discount,
            total_amount=_money(subtotal - discount),
            coupon_code=applied_code,
            notes=notes,
            stock_released=False,
            created_by=user_id,
            items=items,
        )
        db.add(order)
        await db.flush()

        for entry in history:
            entry.order_id = order.id
        OrderRepository.add_event(
            db,
            order,
            "created",
            to_status=OrderStatus.PENDING,
            to_payment_status=PaymentStatus.PENDING,
            metadata={"items": len(items), "total": str(order.total_amount)},
            user_id=user_id,
        )
        await db.commit()
        return order

    @staticmethod
    async def checkout(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        items: Sequence[Any],
        shipping_address: dict[str, Any],
        billing_address: Optional[dict[str, Any]],
        payment_method: PaymentMethod,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
        provider: Optional[PaymentProvider] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> CheckoutResult:
        """
        Convert a cart into a committed ``pending`` order and start payment.

        Quota check, stock reservation, coupon use and the order insert are a
        single transaction; any failure rolls all of them back. Write conflicts
        are retried up to ``CHECKOUT_MAX_RETRIES`` times.

        Payment is initiated after commit. A provider failure or timeout leaves
        the order ``pending``/``pending`` and is reported in the result.

        Raises:
            NoActivePlan, QuotaExceeded, InsufficientStock, InvalidCoupon,
            NotFoundException, ValidationException, PersistenceConflict
        """
        lines = to_cart_lines(items)
        if not lines:
            raise ValidationException("Cart is empty")

        attempts = settings.CHECKOUT_MAX_RETRIES
        order: Optional[Order] = None
        for attempt in range(1, attempts + 1):
            try:
                try:
                    order = await CheckoutService._place_order(
                        db,
                        tenant_id,
                        lines,
                        shipping_address,
                        billing_address,
                        payment_method,
                        coupon_code,
                        notes,
                        user_id,
                    )
                except (IntegrityError, OperationalError) as exc:
                    raise PersistenceConflict(details={"error": exc.__class__.__name__}) from exc
                break
            except PersistenceConflict as exc:
                await db.rollback()
                if attempt >= attempts:
                    logger.error("Checkout for tenant %s failed after %s attempts", tenant_id, attempts)
                    raise PersistenceConflict(
                        "Checkout could not be completed due to concurrent updates, please try again",
                        details=exc.details,
                    ) from exc
                logger.warning("Checkout conflict for tenant %s (attempt %s/%s), retrying", tenant_id, attempt, attempts)
            except Exception:
                await db.rollback()
                raise

        if order is None:
            raise PersistenceConflict("Checkout could not be completed, please try again")
        logger.info("Order %s placed for tenant %s (total %s)", order.order_number, tenant_id, order.total_amount)
        await NotificationService.order_event("order.created", order)

        result = CheckoutResult(order=order)
        provider = provider or get_payment_provider(payment_method)
        try:
            reference = await asyncio.wait_for(
                provider.initiate_payment(order),
                timeout=settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("Payment initiation for order %s timed out", order.order_number)
            result.payment_error = "Payment provider timed out"
            return result
        except PaymentProviderError as exc:
            logger.warning("Payment initiation for order %s failed: %s", order.order_number, exc)
            result.payment_error = str(exc)
            return result

        order.payment_reference = reference
        await db.commit()
        result.payment_reference = reference
        return result
