"""Tests for payment gateway adapters."""

from decimal import Decimal

import httpx
import pytest

from storefront.integrations.payment_providers import (
    CashOnDeliveryProvider,
    HttpPaymentProvider,
    PaymentProviderError,
    get_payment_provider,
)
from storefront.models.models import Order, PaymentMethod


def _order() -> Order:
    return Order(
        order_number="ORD-20240101-000042",
        payment_method=PaymentMethod.PESAPAL,
        customer_email="jane@example.com",
        total_amount=Decimal("25.00"),
        payment_reference="PAY-1",
    )


@pytest.fixture
def gateway(monkeypatch):
    """HttpPaymentProvider whose HTTP calls are answered by ``handler``."""
    real_client = httpx.AsyncClient
    requests = []

    def _build(handler):
        def _record(request):
            requests.append(request)
            return handler(request)

        monkeypatch.setattr(
            httpx,
            "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(_record), **kwargs),
        )
        return HttpPaymentProvider("pesapal", "https://pay.example.com/", "secret", timeout=5)

    _build.requests = requests
    return _build


def test_resolves_adapter_by_method():
    assert isinstance(get_payment_provider(PaymentMethod.CASH_ON_DELIVERY), CashOnDeliveryProvider)
    assert get_payment_provider(PaymentMethod.PAYPAL).name == "paypal"


async def test_cash_on_delivery_needs_no_gateway():
    provider = CashOnDeliveryProvider()

    assert await provider.initiate_payment(_order()) == "COD-ORD-20240101-000042"
    refund = await provider.refund(_order(), Decimal("25.00"))
    assert refund.amount == Decimal("25.00")


async def test_unconfigured_gateway_fails():
    provider = HttpPaymentProvider("paypal", "", "", timeout=5)

    assert provider.configured is False
    assert HttpPaymentProvider("paypal", "https://pay.example.com/", "secret", timeout=5).configured is True
    assert CashOnDeliveryProvider().configured is True
    with pytest.raises(PaymentProviderError):
        await provider.initiate_payment(_order())


async def test_initiate_payment_returns_reference(gateway):
    provider = gateway(lambda request: httpx.Response(200, json={"reference": "PSP-77"}))

    assert await provider.initiate_payment(_order()) == "PSP-77"
    sent = gateway.requests[0]
    assert str(sent.url) == "https://pay.example.com/payments"
    assert sent.headers["Authorization"] == "Bearer secret"


async def test_gateway_error_status(gateway):
    provider = gateway(lambda request: httpx.Response(503, text="maintenance"))

    with pytest.raises(PaymentProviderError):
        await provider.initiate_payment(_order())


async def test_refund_requires_confirmation(gateway):
    provider = gateway(lambda request: httpx.Response(200, json={"status": "queued"}))

    with pytest.raises(PaymentProviderError):
        await provider.refund(_order(), Decimal("25.00"))


async def test_refund_confirmed(gateway):
    provider = gateway(lambda request: httpx.Response(200, json={"status": "completed", "reference": "RF-9"}))

    refund = await provider.refund(_order(), Decimal("25.00"))

    assert refund.reference == "RF-9"
    assert refund.amount == Decimal("25.00")
