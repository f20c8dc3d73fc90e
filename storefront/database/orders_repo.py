"""Repository layer for orders, order events and coupons."""

import json
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.models import Coupon, Order, OrderEvent, OrderStatus, PaymentStatus

_ORDER_SORT_FIELDS = {
    "createdAt": Order.created_date,
    "updatedAt": Order.updated_date,
    "orderNumber": Order.order_number,
    "total": Order.total_amount,
    "status": Order.status,
}


class OrderRepository:
    """Repository for order database operations."""

    @staticmethod
    async def get_order(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id, Order.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        sort: str = "-createdAt",
    ) -> tuple[list[Order], int]:
        """
        Page through a tenant's orders.

        ``search`` matches order number, customer name or email
        (case-insensitive). ``sort`` is a field key, prefixed with ``-`` for
        descending order.

        Returns:
            The orders on the page and the total number of matches
        """
        filters = [Order.tenant_id == tenant_id]
        if status is not None:
            filters.append(Order.status == status)
        if payment_status is not None:
            filters.append(Order.payment_status == payment_status)
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(
                    Order.order_number.ilike(pattern),
                    Order.customer_name.ilike(pattern),
                    Order.customer_email.ilike(pattern),
                )
            )
        if start_date is not None:
            filters.append(Order.created_date >= start_date)
        if end_date is not None:
            filters.append(Order.created_date <= end_date)

        count_result = await db.execute(select(func.count()).select_from(Order).where(*filters))
        total = count_result.scalar() or 0

        descending = sort.startswith("-")
        sort_column = _ORDER_SORT_FIELDS.get(sort.lstrip("-"), Order.created_date)
        result = await db.execute(
            select(Order)
            .where(*filters)
            .order_by(desc(sort_column) if descending else sort_column, Order.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), int(total)

    @staticmethod
    async def order_number_exists(db: AsyncSession, tenant_id: uuid.UUID, order_number: str) -> bool:
        result = await db.execute(
            select(func.count())
            .select_from(Order)
            .where(Order.tenant_id == tenant_id, Order.order_number == order_number)
        )
        return result.scalar_one() > 0

    @staticmethod
    async def list_stale_pending(
        db: AsyncSession,
        cutoff: datetime,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> list[Order]:
        """Lock unpaid pending orders created before ``cutoff``.

        Rows already locked by another sweep are skipped.
        """
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
                Order.created_date < cutoff,
            )
            .order_by(Order.created_date)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            stmt = stmt.where(Order.tenant_id == tenant_id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    def add_event(
        db: AsyncSession,
        order: Order,
        action: str,
        from_status: Optional[OrderStatus] = None,
        to_status: Optional[OrderStatus] = None,
        from_payment_status: Optional[PaymentStatus] = None,
        to_payment_status: Optional[PaymentStatus] = None,
        note: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> OrderEvent:
        event = OrderEvent(
            order_id=order.id,
            action=action,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            from_payment_status=from_payment_status.value if from_payment_status else None,
            to_payment_status=to_payment_status.value if to_payment_status else None,
            note=note,
            event_metadata=json.dumps(metadata, default=str) if metadata else None,
            created_by=user_id,
        )
        db.add(event)
        return event

    @staticmethod
    async def list_events(db: AsyncSession, order_id: uuid.UUID) -> list[OrderEvent]:
        result = await db.execute(
            select(OrderEvent).where(OrderEvent.order_id == order_id).order_by(OrderEvent.created_date)
        )
        return list(result.scalars().all())


class CouponRepository:
    """Repository for coupon database operations."""

    @staticmethod
    async def get_by_code(
        db: AsyncSession,
        tenant_id: uuid.UUID,
        code: str,
        for_update: bool = False,
    ) -> Optional[Coupon]:
        # Codes are matched case-insensitively
        stmt = select(Coupon).where(Coupon.tenant_id == tenant_id, func.upper(Coupon.code) == code.upper())
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
