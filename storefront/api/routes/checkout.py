"""Storefront checkout route."""

from fastapi import APIRouter, status

from storefront.api.deps import DB, CurrentTenant, CurrentUserId, Providers
from storefront.api.routes.orders import order_to_response
from storefront.schemas.orders import CheckoutRequest, CheckoutResponse
from storefront.services.checkout_service import CheckoutService
from storefront.utils.envelopes import api_success

router = APIRouter(tags=["checkout"])


@router.post("/checkout", response_model=dict, status_code=status.HTTP_201_CREATED)
async def checkout(
    payload: CheckoutRequest,
    tenant: CurrentTenant,
    db: DB,
    providers: Providers,
    user_id: CurrentUserId,
):
    """Place an order from cart contents and start payment."""
    result = await CheckoutService.checkout(
        db,
        tenant.id,
        payload.items,
        shipping_address=payload.shipping_address.model_dump(),
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
        payment_method=payload.payment_method,
        coupon_code=payload.coupon_code,
        notes=payload.notes,
        provider=providers(payload.payment_method),
        user_id=user_id,
    )
    return api_success(
        CheckoutResponse(
            order=order_to_response(result.order),
            payment_reference=result.payment_reference,
            payment_error=result.payment_error,
        ).model_dump(mode="json")
    )
