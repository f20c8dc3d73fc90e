"""Order lifecycle routes."""

import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query

from storefront.api.deps import DB, CurrentTenant, CurrentUserId, Providers
from storefront.database.orders_repo import OrderRepository
from storefront.models.models import Order, OrderStatus, PaymentStatus
from storefront.schemas.orders import (
    CancelOrderRequest,
    OrderItemResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentStatusUpdate,
    ReservationSweepResponse,
)
from storefront.services.order_lifecycle import OrderLifecycle
from storefront.utils.envelopes import api_success
from storefront.utils.exceptions import NotFoundException

router = APIRouter(tags=["orders"])


def order_to_response(order: Order) -> dict[str, Any]:
    return OrderResponse(
        id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        payment_reference=order.payment_reference,
        transaction_id=order.transaction_id,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        shipping_address=order.shipping_address_data,
        billing_address=order.billing_address_data,
        subtotal_amount=order.subtotal_amount,
        discount_amount=order.discount_amount,
        total_amount=order.total_amount,
        coupon_code=order.coupon_code,
        notes=order.notes,
        tracking_number=order.tracking_number,
        shipping_carrier=order.shipping_carrier,
        cancellation_reason=order.cancellation_reason,
        stock_released=order.stock_released,
        refund_pending=order.refund_requested_at is not None and order.payment_status == PaymentStatus.PAID,
        items=[
            OrderItemResponse(
                id=str(item.id),
                product_id=str(item.product_id) if item.product_id else None,
                variant_id=str(item.variant_id) if item.variant_id else None,
                product_name=item.product_name,
                sku=item.sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in order.items
        ],
        created_at=order.created_at,
        updated_at=order.updated_at,
    ).model_dump(mode="json")


async def _load_order(db: DB, tenant_id: uuid.UUID, order_id: str, for_update: bool = False) -> Order:
    try:
        oid = uuid.UUID(order_id)
    except ValueError:
        raise NotFoundException("Order not found")
    order = await OrderRepository.get_order(db, tenant_id, oid, for_update=for_update)
    if order is None:
        raise NotFoundException("Order not found")
    return order


@router.get("/orders", response_model=dict)
async def list_orders(
    tenant: CurrentTenant,
    db: DB,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    q: Optional[str] = Query(None, max_length=200),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort: str = Query("-createdAt"),
):
    """List orders with filtering and pagination."""
    orders, total = await OrderRepository.list_orders(
        db,
        tenant.id,
        page=page,
        page_size=page_size,
        status=status_filter,
        payment_status=payment_status,
        search=q,
        start_date=start_date,
        end_date=end_date,
        sort=sort,
    )
    total_pages = (total + page_size - 1) // page_size

    return api_success(
        {
            "items": [order_to_response(o) for o in orders],
            "meta": {
                "page": page,
                "pageSize": page_size,
                "total": total,
                "totalPages": total_pages,
            },
        }
    )


@router.post("/orders/reservations/expire", response_model=dict)
async def expire_reservations(tenant: CurrentTenant, db: DB):
    """Cancel this tenant's unpaid pending orders past the reservation TTL."""
    orders = await OrderLifecycle.expire_stale_reservations(db, tenant_id=tenant.id)
    return api_success(
        ReservationSweepResponse(expired_orders=[o.order_number for o in orders]).model_dump()
    )


@router.get("/orders/{order_id}", response_model=dict)
async def get_order(order_id: str, tenant: CurrentTenant, db: DB):
    order = await _load_order(db, tenant.id, order_id)
    return api_success(order_to_response(order))


@router.patch("/orders/{order_id}/status", response_model=dict)
async def update_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    tenant: CurrentTenant,
    db: DB,
    providers: Providers,
    user_id: CurrentUserId,
):
    """Advance an order's status (ship, deliver, cancel or refund)."""
    order = await _load_order(db, tenant.id, order_id, for_update=True)
    metadata = payload.model_dump(exclude={"status"}, exclude_none=True)
    order = await OrderLifecycle.advance_status(
        db,
        order,
        payload.status,
        metadata=metadata,
        provider=providers(order.payment_method),
        user_id=user_id,
    )
    return api_success(order_to_response(order))


@router.post("/orders/{order_id}/cancel", response_model=dict)
async def cancel_order(
    order_id: str,
    payload: CancelOrderRequest,
    tenant: CurrentTenant,
    db: DB,
    providers: Providers,
    user_id: CurrentUserId,
):
    order = await _load_order(db, tenant.id, order_id, for_update=True)
    order = await OrderLifecycle.cancel(
        db,
        order,
        payload.reason,
        provider=providers(order.payment_method),
        user_id=user_id,
    )
    return api_success(order_to_response(order))


@router.patch("/orders/{order_id}/payment-status", response_model=dict)
async def update_payment_status(
    order_id: str,
    payload: PaymentStatusUpdate,
    tenant: CurrentTenant,
    db: DB,
    providers: Providers,
    user_id: CurrentUserId,
):
    order = await _load_order(db, tenant.id, order_id, for_update=True)
    order = await OrderLifecycle.update_payment_status(
        db,
        order,
        payload.payment_status,
        transaction_id=payload.transaction_id,
        notes=payload.notes,
        provider=providers(order.payment_method),
        user_id=user_id,
    )
    return api_success(order_to_response(order))
