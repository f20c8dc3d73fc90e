"""Tests for cart-to-order checkout."""

import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from storefront.core.config import settings
from storefront.database.tenant_repo import TenantRepository
from storefront.models.models import (
    Coupon,
    CouponDiscountType,
    InventoryAdjustmentType,
    InventoryHistory,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductStatus,
)
from storefront.services.checkout_service import CheckoutService, generate_order_number, to_cart_lines
from storefront.services.stock_reconciler import StockReconciler
from storefront.utils.exceptions import (
    InsufficientStock,
    InvalidCoupon,
    NoActivePlan,
    PersistenceConflict,
    QuotaExceeded,
    ValidationException,
)


async def _coupon(db, tenant, code="SAVE10", discount_type=CouponDiscountType.PERCENTAGE, value="10", **fields):
    coupon = Coupon(tenant_id=tenant.id, code=code, discount_type=discount_type, value=Decimal(value), **fields)
    db.add(coupon)
    await db.commit()
    return coupon


class TestCheckout:
    async def test_reserves_variant_stock_then_rejects_oversell(
        self, db, make_tenant, make_product, variant_of, place_order
    ):
        tenant = await make_tenant()
        tenant_id = tenant.id
        product = await make_product(tenant, variants=[("A", 5), ("B", 3)])
        variant_a = variant_of(product, "A")
        assert product.stock_quantity == 8

        result = await place_order(tenant, [(product, variant_a, 2)])

        assert result.order.status == OrderStatus.PENDING
        assert result.order.payment_status == PaymentStatus.PENDING
        assert variant_a.stock_quantity == 3
        assert product.stock_quantity == 6

        with pytest.raises(InsufficientStock) as exc_info:
            await place_order(tenant, [(product, variant_a, 4)])

        assert exc_info.value.details["requested"] == 4
        assert exc_info.value.details["available"] == 3
        await db.refresh(variant_a)
        await db.refresh(product)
        assert variant_a.stock_quantity == 3
        assert product.stock_quantity == 6
        assert await TenantRepository.count_orders(db, tenant_id) == 1

    async def test_order_snapshot_and_totals(
        self, db, make_tenant, make_product, variant_of, place_order, provider, shipping_address
    ):
        tenant = await make_tenant()
        mug = await make_product(tenant, price="10.00", stock=10, name="Mug")
        shirt = await make_product(tenant, price="30.00", sale_price="25.00", variants=[("M", 4)], name="Shirt")
        size_m = variant_of(shirt, "M")

        result = await place_order(tenant, [(mug, None, 3), (shirt, size_m, 2)], notes="Leave at door")
        order = result.order

        assert re.match(r"^ORD-\d{8}-\d{6}$", order.order_number)
        assert [(i.product_name, i.quantity, i.unit_price, i.line_total) for i in order.items] == [
            ("Mug", 3, Decimal("10.00"), Decimal("30.00")),
            ("Shirt (M)", 2, Decimal("25.00"), Decimal("50.00")),
        ]
        assert order.subtotal_amount == Decimal("80.00")
        assert order.discount_amount == Decimal("0")
        assert order.total_amount == Decimal("80.00")
        assert order.notes == "Leave at door"
        assert order.customer_email == shipping_address["email"]
        assert order.billing_address_data == shipping_address
        assert result.payment_reference == f"PAY-{order.order_number}"
        assert order.payment_reference == result.payment_reference
        assert provider.initiated == [order.order_number]

    async def test_variant_price_overrides_product_price(self, db, make_tenant, make_product, variant_of, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, price="30.00", sale_price="25.00", variants=[("XL", 4)])
        xl = variant_of(product, "XL")
        await StockReconciler.update_variant(db, tenant.id, product.id, xl.id, {"price": Decimal("32.50")})
        await db.commit()

        order = (await place_order(tenant, [(product, xl, 1)])).order

        assert order.items[0].unit_price == Decimal("32.50")

    async def test_sale_history_linked_to_order(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)

        order = (await place_order(tenant, [(product, None, 2)])).order

        result = await db.execute(select(InventoryHistory).where(InventoryHistory.order_id == order.id))
        entries = list(result.scalars().all())
        assert [(e.adjustment_type, e.quantity_change) for e in entries] == [(InventoryAdjustmentType.SALE, -2)]

    async def test_explicit_billing_address(self, db, make_tenant, make_product, place_order, shipping_address):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)
        billing = dict(shipping_address, name="Accounts Dept", city="Mombasa")

        order = (await place_order(tenant, [(product, None, 1)], billing_address=billing)).order

        assert order.billing_address_data["city"] == "Mombasa"
        assert order.shipping_address_data["city"] == "Nairobi"

    async def test_inactive_product_rejected(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5, status=ProductStatus.DRAFT)

        with pytest.raises(ValidationException):
            await place_order(tenant, [(product, None, 1)])

        await db.refresh(product)
        assert product.stock_quantity == 5

    async def test_product_with_variants_needs_variant(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, variants=[("A", 5)])

        with pytest.raises(ValidationException):
            await place_order(tenant, [(product, None, 1)])

    @pytest.mark.parametrize("quantity", [0, -1, "2", True])
    def test_invalid_quantity(self, quantity):
        with pytest.raises(ValidationException):
            to_cart_lines([{"product_id": "3f2504e0-4f89-11d3-9a0c-0305e82c3301", "quantity": quantity}])

    async def test_empty_cart(self, db, make_tenant, shipping_address):
        tenant = await make_tenant()

        with pytest.raises(ValidationException):
            await CheckoutService.checkout(
                db, tenant.id, [], shipping_address, None, PaymentMethod.CASH_ON_DELIVERY
            )


class TestCheckoutQuota:
    async def test_order_quota_blocks_checkout(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant({"max_orders": 1})
        product = await make_product(tenant, stock=5)
        await place_order(tenant, [(product, None, 1)])

        with pytest.raises(QuotaExceeded) as exc_info:
            await place_order(tenant, [(product, None, 1)])

        assert exc_info.value.message == "Order limit reached (1/1). Please upgrade your plan to process more orders."
        await db.refresh(product)
        assert product.stock_quantity == 4

    async def test_tenant_without_plan(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant(with_plan=False)
        product = await make_product(tenant, stock=5)

        with pytest.raises(NoActivePlan):
            await place_order(tenant, [(product, None, 1)])


class TestCoupons:
    async def test_percentage_coupon(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, price="19.99", stock=5)
        coupon = await _coupon(db, tenant, code="SAVE10", value="10")

        order = (await place_order(tenant, [(product, None, 1)], coupon_code="save10")).order

        assert order.coupon_code == "SAVE10"
        assert order.discount_amount == Decimal("2.00")
        assert order.total_amount == Decimal("17.99")
        assert coupon.used_count == 1

    async def test_fixed_coupon_capped_at_subtotal(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, price="15.00", stock=5)
        await _coupon(db, tenant, code="BIG", discount_type=CouponDiscountType.FIXED, value="50")

        order = (await place_order(tenant, [(product, None, 1)], coupon_code="BIG")).order

        assert order.discount_amount == Decimal("15.00")
        assert order.total_amount == Decimal("0.00")

    @pytest.mark.parametrize(
        "fields",
        [
            {"is_active": False},
            {"expires_at": datetime(2020, 1, 1, tzinfo=timezone.utc)},
            {"starts_at": datetime(2999, 1, 1, tzinfo=timezone.utc)},
            {"usage_limit": 1, "used_count": 1},
            {"min_order_amount": Decimal("100.00")},
        ],
    )
    async def test_unusable_coupon_aborts_checkout(self, db, make_tenant, make_product, place_order, fields):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)
        await _coupon(db, tenant, code="NOPE", **fields)

        with pytest.raises(InvalidCoupon):
            await place_order(tenant, [(product, None, 2)], coupon_code="NOPE")

        await db.refresh(product)
        assert product.stock_quantity == 5

    async def test_unknown_coupon(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)

        with pytest.raises(InvalidCoupon) as exc_info:
            await place_order(tenant, [(product, None, 1)], coupon_code="GHOST")

        assert exc_info.value.code == "INVALID_COUPON"


class TestPaymentInitiation:
    async def test_provider_failure_leaves_order_pending(
        self, db, make_tenant, make_product, place_order, provider_factory
    ):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)

        result = await place_order(tenant, [(product, None, 2)], gateway=provider_factory(fail_initiate=True))

        assert result.payment_reference is None
        assert result.payment_error == "gateway declined the request"
        assert result.order.status == OrderStatus.PENDING
        assert result.order.payment_status == PaymentStatus.PENDING
        assert result.order.payment_reference is None
        assert product.stock_quantity == 3

    async def test_provider_timeout_leaves_order_pending(
        self, db, make_tenant, make_product, place_order, provider_factory, monkeypatch
    ):
        monkeypatch.setattr(settings, "PAYMENT_PROVIDER_TIMEOUT_SECONDS", 0.01)
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)

        result = await place_order(tenant, [(product, None, 2)], gateway=provider_factory(initiate_delay=1.0))

        assert result.payment_error == "Payment provider timed out"
        assert result.order.status == OrderStatus.PENDING
        assert result.order.payment_status == PaymentStatus.PENDING
        assert product.stock_quantity == 3


class TestConflictRetry:
    async def test_conflict_is_retried(self, db, make_tenant, make_product, place_order, monkeypatch):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)
        original = CheckoutService._place_order
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise IntegrityError("INSERT INTO tbl_orders", {}, Exception("duplicate order number"))
            return await original(*args, **kwargs)

        monkeypatch.setattr(CheckoutService, "_place_order", staticmethod(flaky))

        order = (await place_order(tenant, [(product, None, 1)])).order

        assert calls["n"] == 2
        assert order.status == OrderStatus.PENDING
        assert product.stock_quantity == 4

    async def test_conflict_retries_exhausted(self, db, make_tenant, make_product, place_order, monkeypatch):
        monkeypatch.setattr(settings, "CHECKOUT_MAX_RETRIES", 2)
        tenant = await make_tenant()
        product = await make_product(tenant, stock=5)
        calls = {"n": 0}

        async def always_conflicts(*args, **kwargs):
            calls["n"] += 1
            raise IntegrityError("INSERT INTO tbl_orders", {}, Exception("duplicate order number"))

        monkeypatch.setattr(CheckoutService, "_place_order", staticmethod(always_conflicts))

        with pytest.raises(PersistenceConflict):
            await place_order(tenant, [(product, None, 1)])

        assert calls["n"] == 2


class TestOrderNumber:
    async def test_format_and_date(self, db, make_tenant):
        tenant = await make_tenant()

        number = await generate_order_number(db, tenant.id, now=datetime(2024, 3, 9, tzinfo=timezone.utc))

        assert re.match(r"^ORD-20240309-\d{6}$", number)

    async def test_numbers_are_unique_per_order(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=10)

        numbers = {(await place_order(tenant, [(product, None, 1)])).order.order_number for _ in range(5)}

        assert len(numbers) == 5
