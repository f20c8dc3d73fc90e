"""Tests for order status and payment status transitions."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from storefront.database.orders_repo import OrderRepository
from storefront.models.models import OrderEvent, OrderStatus, PaymentStatus, utcnow
from storefront.services.order_lifecycle import (
    ORDER_TRANSITIONS,
    RESERVATION_EXPIRED_REASON,
    OrderLifecycle,
    can_transition,
)
from storefront.utils.exceptions import InvalidTransition, RefundFailed, ValidationException

SHIPPING = {"tracking_number": "TRK-1", "shipping_carrier": "DHL"}


@pytest.fixture
def stocked(make_tenant, make_product, variant_of):
    """A tenant with an 'A'(5)/'B'(3) product; returns (tenant, product, variant A)."""

    async def _build():
        tenant = await make_tenant()
        product = await make_product(tenant, variants=[("A", 5), ("B", 3)])
        return tenant, product, variant_of(product, "A")

    return _build


async def _paid(db, order):
    return await OrderLifecycle.update_payment_status(db, order, PaymentStatus.PAID, transaction_id="TX-1")


async def _actions(db, order):
    result = await db.execute(
        select(OrderEvent.action).where(OrderEvent.order_id == order.id).order_by(OrderEvent.created_date)
    )
    return list(result.scalars().all())


class TestTransitionTable:
    def test_pending_to_processing_allowed(self):
        assert can_transition(OrderStatus.PENDING, OrderStatus.PROCESSING)

    @pytest.mark.parametrize("target", list(OrderStatus))
    def test_delivered_is_terminal(self, target):
        assert not can_transition(OrderStatus.DELIVERED, target)

    def test_cancel_only_from_pending_or_processing(self):
        sources = {s for s, targets in ORDER_TRANSITIONS.items() if OrderStatus.CANCELLED in targets}
        assert sources == {OrderStatus.PENDING, OrderStatus.PROCESSING}


class TestAdvanceStatus:
    async def test_pending_to_processing(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING, {"notes": "packing"})

        assert order.status == OrderStatus.PROCESSING
        assert await _actions(db, order) == ["created", "status_changed"]
        # Forward transitions never touch stock
        assert product.stock_quantity == 7

    async def test_ship_requires_tracking_and_carrier(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING)

        with pytest.raises(ValidationException):
            await OrderLifecycle.advance_status(db, order, OrderStatus.SHIPPED, {"tracking_number": "TRK-1"})
        assert order.status == OrderStatus.PROCESSING

        await OrderLifecycle.advance_status(db, order, OrderStatus.SHIPPED, dict(SHIPPING))

        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "TRK-1"
        assert order.shipping_carrier == "DHL"

    async def test_skipping_states_rejected(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        with pytest.raises(InvalidTransition) as exc_info:
            await OrderLifecycle.advance_status(db, order, OrderStatus.DELIVERED)

        assert exc_info.value.details == {"current": "pending", "target": "delivered"}
        assert order.status == OrderStatus.PENDING

    async def test_delivered_never_advances(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING)
        await OrderLifecycle.advance_status(db, order, OrderStatus.SHIPPED, dict(SHIPPING))
        await OrderLifecycle.advance_status(db, order, OrderStatus.DELIVERED)

        for target in (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.REFUNDED):
            with pytest.raises(InvalidTransition):
                await OrderLifecycle.advance_status(db, order, target)

        with pytest.raises(InvalidTransition):
            await OrderLifecycle.cancel(db, order, "too late")

        assert order.status == OrderStatus.DELIVERED

    async def test_same_status_is_noop(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        await OrderLifecycle.advance_status(db, order, OrderStatus.PENDING)

        assert await _actions(db, order) == ["created"]

    async def test_cancel_via_advance_requires_reason(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        with pytest.raises(ValidationException):
            await OrderLifecycle.advance_status(db, order, OrderStatus.CANCELLED)

        await OrderLifecycle.advance_status(db, order, OrderStatus.CANCELLED, {"reason": "changed mind"})

        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == "changed mind"

    async def test_refund_requires_captured_payment(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        with pytest.raises(InvalidTransition):
            await OrderLifecycle.advance_status(db, order, OrderStatus.REFUNDED, provider=provider)

        assert provider.refunds == []

    async def test_refund_processing_order_returns_stock(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING)

        await OrderLifecycle.advance_status(db, order, OrderStatus.REFUNDED, provider=provider)

        assert order.status == OrderStatus.REFUNDED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.stock_released is True
        assert product.stock_quantity == 8
        assert provider.refunds == [(order.order_number, order.total_amount)]

    async def test_refund_shipped_order_keeps_stock(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING)
        await OrderLifecycle.advance_status(db, order, OrderStatus.SHIPPED, dict(SHIPPING))

        await OrderLifecycle.advance_status(db, order, OrderStatus.REFUNDED, provider=provider)

        assert order.status == OrderStatus.REFUNDED
        assert order.stock_released is False
        assert product.stock_quantity == 6

    async def test_refund_failure_changes_nothing(self, db, stocked, place_order, provider_factory):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)

        with pytest.raises(RefundFailed):
            await OrderLifecycle.advance_status(
                db, order, OrderStatus.REFUNDED, provider=provider_factory(fail_refund=True)
            )

        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PAID
        assert product.stock_quantity == 6


class TestCancel:
    async def test_cancel_unpaid_order_releases_stock(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order

        await OrderLifecycle.cancel(db, order, "customer request", provider=provider)

        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.PENDING
        assert order.stock_released is True
        assert variant_a.stock_quantity == 5
        assert product.stock_quantity == 8
        assert provider.refunds == []

    async def test_cancel_shipped_paid_order(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING)
        await OrderLifecycle.advance_status(db, order, OrderStatus.SHIPPED, dict(SHIPPING))

        await OrderLifecycle.cancel(db, order, "customer request", provider=provider)

        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.stock_released is True
        assert product.stock_quantity == 8
        assert provider.refunds == [(order.order_number, order.total_amount)]
        actions = await _actions(db, order)
        assert actions[-2:] == ["cancelled", "payment_refunded"]

    async def test_refund_failure_leaves_order_cancelled_and_paid(
        self, db, stocked, place_order, provider_factory
    ):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)
        failing = provider_factory(fail_refund=True)

        with pytest.raises(RefundFailed) as exc_info:
            await OrderLifecycle.cancel(db, order, "customer request", provider=failing)

        assert exc_info.value.details["order_number"] == order.order_number
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.PAID
        assert order.refund_requested_at is None
        assert order.stock_released is True
        assert product.stock_quantity == 8
        assert (await _actions(db, order))[-1] == "refund_failed"

        # Retrying the cancel retries the refund without touching stock again
        working = provider_factory()
        await OrderLifecycle.cancel(db, order, "customer request", provider=working)

        assert order.payment_status == PaymentStatus.REFUNDED
        assert len(working.refunds) == 1
        assert product.stock_quantity == 8

    async def test_overlapping_cancel_refunds_once(self, db, session_factory, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await _paid(db, order)

        refund_started = asyncio.Event()
        release_refund = asyncio.Event()
        confirm_refund = provider.refund

        async def slow_refund(target, amount):
            refund_started.set()
            await release_refund.wait()
            return await confirm_refund(target, amount)

        provider.refund = slow_refund
        first = asyncio.create_task(OrderLifecycle.cancel(db, order, "customer request", provider=provider))
        await asyncio.wait_for(refund_started.wait(), timeout=5)

        # A second request sees the committed refund claim and backs off
        async with session_factory() as other:
            same = await OrderRepository.get_order(other, tenant.id, order.id, for_update=True)
            assert same.status == OrderStatus.CANCELLED
            assert same.refund_requested_at is not None

            await OrderLifecycle.cancel(other, same, "customer request", provider=provider)
            with pytest.raises(InvalidTransition):
                await OrderLifecycle.advance_status(other, same, OrderStatus.REFUNDED, provider=provider)

            assert same.payment_status == PaymentStatus.PAID

        release_refund.set()
        await first

        assert order.payment_status == PaymentStatus.REFUNDED
        assert provider.refunds == [(order.order_number, order.total_amount)]
        assert product.stock_quantity == 8

    async def test_cancel_already_cancelled_unpaid_is_noop(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        await OrderLifecycle.cancel(db, order, "first")

        await OrderLifecycle.cancel(db, order, "second")

        assert order.cancellation_reason == "first"
        assert product.stock_quantity == 8

    @pytest.mark.parametrize("reason", [None, "", "   ", "x" * 501])
    async def test_reason_validated(self, db, stocked, place_order, reason):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        with pytest.raises(ValidationException):
            await OrderLifecycle.cancel(db, order, reason)

        assert order.status == OrderStatus.PENDING
        assert order.stock_released is False


class TestPaymentStatus:
    async def test_pending_to_paid_to_refunded(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order

        await _paid(db, order)
        assert order.payment_status == PaymentStatus.PAID
        assert order.transaction_id == "TX-1"

        with pytest.raises(InvalidTransition):
            await OrderLifecycle.update_payment_status(db, order, PaymentStatus.REFUNDED)

        order.status = OrderStatus.CANCELLED
        await db.commit()
        await OrderLifecycle.update_payment_status(db, order, PaymentStatus.REFUNDED, notes="refunded by bank")

        assert order.payment_status == PaymentStatus.REFUNDED

    async def test_failed_is_terminal(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order
        await OrderLifecycle.update_payment_status(db, order, PaymentStatus.FAILED)

        with pytest.raises(InvalidTransition):
            await OrderLifecycle.update_payment_status(db, order, PaymentStatus.PAID)

    async def test_paid_cannot_fail(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order
        await _paid(db, order)

        with pytest.raises(InvalidTransition):
            await OrderLifecycle.update_payment_status(db, order, PaymentStatus.FAILED)


class TestReservationExpiry:
    async def test_stale_pending_orders_are_cancelled(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        stale = (await place_order(tenant, [(product, variant_a, 2)])).order
        paid = (await place_order(tenant, [(product, variant_a, 1)])).order
        await _paid(db, paid)
        stale.created_date = utcnow() - timedelta(hours=2)
        paid.created_date = utcnow() - timedelta(hours=2)
        await db.commit()

        expired = await OrderLifecycle.expire_stale_reservations(db, ttl_minutes=30)

        assert [o.id for o in expired] == [stale.id]
        assert stale.status == OrderStatus.CANCELLED
        assert stale.cancellation_reason == RESERVATION_EXPIRED_REASON
        assert paid.status == OrderStatus.PENDING
        assert variant_a.stock_quantity == 4

    async def test_recent_orders_are_kept(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order

        assert await OrderLifecycle.expire_stale_reservations(db, ttl_minutes=30) == []
        assert order.status == OrderStatus.PENDING

    async def test_events_are_recorded(self, db, stocked, place_order):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 1)])).order
        await OrderLifecycle.advance_status(db, order, OrderStatus.PROCESSING, {"notes": "packing"})

        events = await OrderRepository.list_events(db, order.id)

        assert [e.action for e in events] == ["created", "status_changed"]
        assert events[-1].from_status == "pending"
        assert events[-1].to_status == "processing"
        assert events[-1].note == "packing"

    async def test_late_payment_on_expired_order_is_refunded(self, db, stocked, place_order, provider):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        order.created_date = utcnow() - timedelta(hours=2)
        await db.commit()
        await OrderLifecycle.expire_stale_reservations(db, ttl_minutes=30)

        await OrderLifecycle.update_payment_status(
            db, order, PaymentStatus.PAID, transaction_id="TX-LATE", provider=provider
        )

        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.REFUNDED
        assert order.transaction_id == "TX-LATE"
        assert provider.refunds == [(order.order_number, order.total_amount)]
        assert variant_a.stock_quantity == 5
        assert (await _actions(db, order))[-2:] == ["payment_status_changed", "payment_refunded"]

    async def test_late_payment_refund_failure_can_be_retried(self, db, stocked, place_order, provider_factory):
        tenant, product, variant_a = await stocked()
        order = (await place_order(tenant, [(product, variant_a, 2)])).order
        order.created_date = utcnow() - timedelta(hours=2)
        await db.commit()
        await OrderLifecycle.expire_stale_reservations(db, ttl_minutes=30)

        with pytest.raises(RefundFailed):
            await OrderLifecycle.update_payment_status(
                db, order, PaymentStatus.PAID, provider=provider_factory(fail_refund=True)
            )

        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.PAID
        assert order.refund_requested_at is None

        working = provider_factory()
        await OrderLifecycle.cancel(db, order, "paid after expiry", provider=working)

        assert order.payment_status == PaymentStatus.REFUNDED
        assert len(working.refunds) == 1
        assert variant_a.stock_quantity == 5
