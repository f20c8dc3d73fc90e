"""Order Lifecycle Machine.

Order status and payment status are two parallel state machines. Stock is
only touched when an order is cancelled, refunded before shipping, or its
reservation expires.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.database.orders_repo import OrderRepository
from storefront.integrations.payment_providers import (
    PaymentProvider,
    PaymentProviderError,
    RefundConfirmation,
    get_payment_provider,
)
from storefront.models.models import Order, OrderStatus, PaymentStatus, utcnow
from storefront.services.notification_service import NotificationService
from storefront.services.stock_reconciler import StockReconciler
from storefront.utils.exceptions import InvalidTransition, RefundFailed, ValidationException

logger = logging.getLogger(__name__)


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Statuses from which cancel() is refused
_NOT_CANCELLABLE = frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED})

# Goods never left the warehouse in these states
_STOCK_HELD = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED})

RESERVATION_EXPIRED_REASON = "Reservation expired"
MAX_REASON_LENGTH = 500


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def _clean_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationException("Cancellation reason is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationException(f"Cancellation reason must be at most {MAX_REASON_LENGTH} characters")
    return reason


class OrderLifecycle:
    """Status and payment-status transitions for orders."""

    @staticmethod
    async def _request_refund(order: Order, provider: PaymentProvider) -> RefundConfirmation:
        try:
            return await asyncio.wait_for(
                provider.refund(order, order.total_amount),
                timeout=settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("Refund for order %s timed out", order.order_number)
            raise RefundFailed(order.order_number, "payment provider timed out") from None
        except PaymentProviderError as exc:
            logger.error("Refund for order %s failed: %s", order.order_number, exc)
            raise RefundFailed(order.order_number, str(exc)) from exc

    @staticmethod
    async def advance_status(
        db: AsyncSession,
        order: Order,
        target: OrderStatus,
        metadata: Optional[dict[str, Any]] = None,
        provider: Optional[PaymentProvider] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Move an order to ``target``.

        Args:
            metadata: ``tracking_number`` and ``shipping_carrier`` (required for
                ``shipped``), ``reason`` (required for ``cancelled``), ``notes``

        Raises:
            InvalidTransition: ``target`` is not reachable from the current status
            ValidationException: required metadata is missing
            RefundFailed: provider did not confirm a refund (nothing is changed)
        """
        metadata = metadata or {}
        current = order.status

        if target == current:
            return order

        if not can_transition(current, target):
            raise InvalidTransition(current.value, target.value)

        if target == OrderStatus.CANCELLED:
            return await OrderLifecycle.cancel(
                db, order, metadata.get("reason"), provider=provider, user_id=user_id
            )

        if target == OrderStatus.REFUNDED:
            return await OrderLifecycle._refund_order(db, order, metadata, provider, user_id)

        if target == OrderStatus.SHIPPED:
            tracking_number = (metadata.get("tracking_number") or "").strip()
            shipping_carrier = (metadata.get("shipping_carrier") or "").strip()
            if not tracking_number or not shipping_carrier:
                raise ValidationException(
                    "Tracking number and shipping carrier are required to ship an order",
                    details={"tracking_number": bool(tracking_number), "shipping_carrier": bool(shipping_carrier)},
                )
            order.tracking_number = tracking_number
            order.shipping_carrier = shipping_carrier

        order.status = target
        order.updated_by = user_id
        OrderRepository.add_event(
            db,
            order,
            "status_changed",
            from_status=current,
            to_status=target,
            note=metadata.get("notes"),
            metadata={k: v for k, v in metadata.items() if k in ("tracking_number", "shipping_carrier")} or None,
            user_id=user_id,
        )
        await db.commit()

        logger.info("Order %s: %s -> %s", order.order_number, current.value, target.value)
        await NotificationService.order_event("order.status_changed", order, from_status=current.value)
        return order

    @staticmethod
    async def _refund_order(
        db: AsyncSession,
        order: Order,
        metadata: dict[str, Any],
        provider: Optional[PaymentProvider],
        user_id: Optional[uuid.UUID],
    ) -> Order:
        current = order.status
        if order.payment_status != PaymentStatus.PAID:
            raise InvalidTransition(
                current.value,
                OrderStatus.REFUNDED.value,
                message="Order can only be refunded once payment has been captured",
            )
        if order.refund_requested_at is not None:
            raise InvalidTransition(
                current.value,
                OrderStatus.REFUNDED.value,
                message="A refund is already in progress for this order",
            )

        provider = provider or get_payment_provider(order.payment_method)
        confirmation = await OrderLifecycle._request_refund(order, provider)

        if current in _STOCK_HELD:
            await StockReconciler.release_stock(db, order, user_id=user_id)

        order.status = OrderStatus.REFUNDED
        order.payment_status = PaymentStatus.REFUNDED
        order.updated_by = user_id
        OrderRepository.add_event(
            db,
            order,
            "refunded",
            from_status=current,
            to_status=OrderStatus.REFUNDED,
            from_payment_status=PaymentStatus.PAID,
            to_payment_status=PaymentStatus.REFUNDED,
            note=metadata.get("notes") or metadata.get("reason"),
            metadata={"refund_reference": confirmation.reference, "amount": str(confirmation.amount)},
            user_id=user_id,
        )
        await db.commit()

        logger.info("Order %s refunded (%s)", order.order_number, confirmation.reference)
        await NotificationService.order_event("order.refunded", order, refund_reference=confirmation.reference)
        return order

    @staticmethod
    async def cancel(
        db: AsyncSession,
        order: Order,
        reason: Optional[str],
        provider: Optional[PaymentProvider] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Cancel an order, return its stock and refund a captured payment.

        The cancellation, stock release and refund claim are committed before
        the refund is requested. If the provider fails, the claim is cleared,
        the order stays cancelled with payment ``paid`` and RefundFailed is
        raised; calling cancel again retries the refund. While a claim is
        outstanding, further calls return the order untouched.

        Raises:
            ValidationException: reason missing or too long
            InvalidTransition: order is delivered or refunded
            RefundFailed: provider did not confirm the refund
        """
        reason = _clean_reason(reason)
        current = order.status

        if current == OrderStatus.CANCELLED:
            if order.payment_status != PaymentStatus.PAID:
                return order
            if order.refund_requested_at is not None:
                logger.info("Refund for order %s already in progress", order.order_number)
                return order
            order.refund_requested_at = utcnow()
            await db.commit()
            return await OrderLifecycle._refund_cancelled(db, order, provider, user_id)

        if current in _NOT_CANCELLABLE:
            raise InvalidTransition(current.value, OrderStatus.CANCELLED.value)

        refund_due = order.payment_status == PaymentStatus.PAID
        order.status = OrderStatus.CANCELLED
        order.cancellation_reason = reason
        order.updated_by = user_id
        if refund_due:
            order.refund_requested_at = utcnow()
        await StockReconciler.release_stock(db, order, user_id=user_id)
        OrderRepository.add_event(
            db,
            order,
            "cancelled",
            from_status=current,
            to_status=OrderStatus.CANCELLED,
            note=reason,
            user_id=user_id,
        )
        await db.commit()

        logger.info("Order %s cancelled from %s: %s", order.order_number, current.value, reason)
        await NotificationService.order_event("order.cancelled", order, reason=reason)

        if refund_due:
            return await OrderLifecycle._refund_cancelled(db, order, provider, user_id)
        return order

    @staticmethod
    async def _refund_cancelled(
        db: AsyncSession,
        order: Order,
        provider: Optional[PaymentProvider],
        user_id: Optional[uuid.UUID],
    ) -> Order:
        # Caller has committed refund_requested_at, so overlapping calls back off
        provider = provider or get_payment_provider(order.payment_method)
        try:
            confirmation = await OrderLifecycle._request_refund(order, provider)
        except RefundFailed as exc:
            order.refund_requested_at = None
            OrderRepository.add_event(
                db,
                order,
                "refund_failed",
                note=exc.message,
                metadata={"provider": provider.name},
                user_id=user_id,
            )
            await db.commit()
            raise

        order.payment_status = PaymentStatus.REFUNDED
        order.updated_by = user_id
        OrderRepository.add_event(
            db,
            order,
            "payment_refunded",
            from_payment_status=PaymentStatus.PAID,
            to_payment_status=PaymentStatus.REFUNDED,
            metadata={"refund_reference": confirmation.reference, "amount": str(confirmation.amount)},
            user_id=user_id,
        )
        await db.commit()

        logger.info("Refund confirmed for order %s (%s)", order.order_number, confirmation.reference)
        await NotificationService.order_event("order.refunded", order, refund_reference=confirmation.reference)
        return order

    @staticmethod
    async def update_payment_status(
        db: AsyncSession,
        order: Order,
        target: PaymentStatus,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
        provider: Optional[PaymentProvider] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> Order:
        """
        Record a payment status change reported by the gateway or an admin.

        Marking a payment ``refunded`` here records a refund done outside the
        provider integration and is only allowed on cancelled/refunded orders.

        A payment confirmed after the order was cancelled (for example once its
        reservation expired) is recorded as ``paid`` and refunded right away.

        Raises:
            InvalidTransition: ``target`` is not reachable from the current payment status
            RefundFailed: a late payment was recorded but its refund was not confirmed
        """
        current = order.payment_status
        if target == current:
            return order

        if target not in PAYMENT_TRANSITIONS[current]:
            raise InvalidTransition(current.value, target.value)

        if target == PaymentStatus.REFUNDED and order.status not in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise InvalidTransition(
                current.value,
                target.value,
                message="Payment can only be refunded for cancelled or refunded orders",
            )

        refund_due = target == PaymentStatus.PAID and order.status == OrderStatus.CANCELLED
        order.payment_status = target
        if transaction_id:
            order.transaction_id = transaction_id
        order.updated_by = user_id
        if refund_due:
            order.refund_requested_at = utcnow()
        OrderRepository.add_event(
            db,
            order,
            "payment_status_changed",
            from_payment_status=current,
            to_payment_status=target,
            note=notes,
            metadata={"transaction_id": transaction_id} if transaction_id else None,
            user_id=user_id,
        )
        await db.commit()

        logger.info("Order %s payment: %s -> %s", order.order_number, current.value, target.value)
        await NotificationService.order_event("order.payment_updated", order, from_payment_status=current.value)

        if refund_due:
            logger.warning("Order %s was paid after cancellation, refunding", order.order_number)
            return await OrderLifecycle._refund_cancelled(db, order, provider, user_id)
        return order

    @staticmethod
    async def expire_stale_reservations(
        db: AsyncSession,
        now: Optional[datetime] = None,
        ttl_minutes: Optional[int] = None,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> list[Order]:
        """
        Cancel unpaid pending orders older than the reservation TTL and
        return their stock.

        Returns:
            The orders that were cancelled
        """
        now = now or utcnow()
        ttl = ttl_minutes if ttl_minutes is not None else settings.RESERVATION_TTL_MINUTES
        cutoff = now - timedelta(minutes=ttl)

        orders = await OrderRepository.list_stale_pending(db, cutoff, tenant_id=tenant_id)
        if not orders:
            return []

        for order in orders:
            order.status = OrderStatus.CANCELLED
            order.cancellation_reason = RESERVATION_EXPIRED_REASON
            await StockReconciler.release_stock(db, order)
            OrderRepository.add_event(
                db,
                order,
                "reservation_expired",
                from_status=OrderStatus.PENDING,
                to_status=OrderStatus.CANCELLED,
                note=RESERVATION_EXPIRED_REASON,
            )
        await db.commit()

        logger.info("Expired %s stale reservation(s) older than %s", len(orders), cutoff.isoformat())
        for order in orders:
            await NotificationService.order_event("order.cancelled", order, reason=RESERVATION_EXPIRED_REASON)
        return orders
