"""Payment gateway adapters.

Gateways are opaque: the core only asks them to start a payment for an order
and to refund a captured payment. Confirmation of captured payments arrives
out-of-band and is applied through ``update_payment_status``.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx

from storefront.core.config import settings
from storefront.models.models import Order, PaymentMethod

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """Gateway rejected the request or could not be reached."""


@dataclass(frozen=True)
class RefundConfirmation:
    reference: str
    amount: Decimal


class PaymentProvider:
    """Interface every gateway adapter implements."""

    name = "base"
    configured = True

    async def initiate_payment(self, order: Order) -> str:
        raise NotImplementedError

    async def refund(self, order: Order, amount: Decimal) -> RefundConfirmation:
        raise NotImplementedError


class CashOnDeliveryProvider(PaymentProvider):
    """Payment is collected by the courier; nothing to call."""

    name = PaymentMethod.CASH_ON_DELIVERY.value

    async def initiate_payment(self, order: Order) -> str:
        return f"COD-{order.order_number}"

    async def refund(self, order: Order, amount: Decimal) -> RefundConfirmation:
        # Cash is handed back by the merchant
        return RefundConfirmation(reference=f"COD-REFUND-{order.order_number}", amount=amount)


class HttpPaymentProvider(PaymentProvider):
    """JSON-over-HTTP gateway (Pesapal, PayPal)."""

    def __init__(self, name: str, base_url: str, api_key: str, timeout: float) -> None:
        self.name = name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._api_key)

    async def _post(self, path: str, body: dict) -> dict:
        if not self.configured:
            raise PaymentProviderError(f"{self.name} gateway is not configured")

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.RequestError as exc:
            logger.exception("Error calling %s gateway", self.name)
            raise PaymentProviderError(f"{self.name} gateway unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "%s gateway returned %s: %s",
                self.name,
                response.status_code,
                response.text[:200],
            )
            raise PaymentProviderError(f"{self.name} gateway error {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise PaymentProviderError(f"{self.name} gateway returned invalid JSON") from exc

    async def initiate_payment(self, order: Order) -> str:
        data = await self._post(
            "/payments",
            {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "amount": str(order.total_amount),
                "customer_email": order.customer_email,
            },
        )
        reference = data.get("reference")
        if not reference:
            raise PaymentProviderError(f"{self.name} gateway returned no payment reference")
        return str(reference)

    async def refund(self, order: Order, amount: Decimal) -> RefundConfirmation:
        data = await self._post(
            "/refunds",
            {
                "order_number": order.order_number,
                "payment_reference": order.payment_reference,
                "transaction_id": order.transaction_id,
                "amount": str(amount),
            },
        )
        if data.get("status") not in ("confirmed", "completed"):
            raise PaymentProviderError(f"{self.name} refund not confirmed: {data.get('status')}")
        return RefundConfirmation(reference=str(data.get("reference", "")), amount=amount)


def get_payment_provider(method: PaymentMethod, timeout: Optional[float] = None) -> PaymentProvider:
    """Resolve the adapter for an order's payment method."""
    timeout = timeout if timeout is not None else settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS
    if method == PaymentMethod.PESAPAL:
        return HttpPaymentProvider("pesapal", settings.PESAPAL_API_URL, settings.PESAPAL_API_KEY, timeout)
    if method == PaymentMethod.PAYPAL:
        return HttpPaymentProvider("paypal", settings.PAYPAL_API_URL, settings.PAYPAL_API_KEY, timeout)
    return CashOnDeliveryProvider()
