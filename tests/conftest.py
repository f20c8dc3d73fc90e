"""Shared fixtures: in-memory SQLite database, tenants/plans/products factories,
fake payment gateways and an HTTP client wired to the app.
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from storefront.core.security import create_access_token
from storefront.integrations.payment_providers import (
    PaymentProvider,
    PaymentProviderError,
    RefundConfirmation,
)
from storefront.models import Base
from storefront.models.models import Order, Plan, Product, ProductStatus, Tenant, utcnow
from storefront.services.stock_reconciler import StockReconciler


def _patch_columns_for_sqlite() -> None:
    """SQLite drops tzinfo; hand timestamps back as UTC-aware."""

    class _UTCAwareDateTime(TypeDecorator):
        impl = DateTime
        cache_ok = True

        def process_result_value(self, value, dialect):  # type: ignore[override]
            if value is not None and value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value

    for table in Base.metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, DateTime) and getattr(column.type, "timezone", False):
                column.type = _UTCAwareDateTime()


_patch_columns_for_sqlite()


UNLIMITED_FEATURES = {"max_products": -1, "max_orders": -1}

SHIPPING_ADDRESS = {
    "name": "Jane Buyer",
    "email": "jane@example.com",
    "phone": "+254700000000",
    "address_line_1": "1 Market Street",
    "address_line_2": None,
    "city": "Nairobi",
    "state": "Nairobi",
    "postal_code": "00100",
    "country": "Kenya",
}


# ---------------------------------------------------------------------------
# Fake payment gateways
# ---------------------------------------------------------------------------


class FakePaymentProvider(PaymentProvider):
    """Records calls; can be told to fail or hang."""

    name = "fake"

    def __init__(
        self,
        fail_initiate: bool = False,
        fail_refund: bool = False,
        initiate_delay: float = 0.0,
    ) -> None:
        self.fail_initiate = fail_initiate
        self.fail_refund = fail_refund
        self.initiate_delay = initiate_delay
        self.initiated: list[str] = []
        self.refunds: list[tuple[str, Decimal]] = []

    async def initiate_payment(self, order: Order) -> str:
        if self.initiate_delay:
            await asyncio.sleep(self.initiate_delay)
        if self.fail_initiate:
            raise PaymentProviderError("gateway declined the request")
        self.initiated.append(order.order_number)
        return f"PAY-{order.order_number}"

    async def refund(self, order: Order, amount: Decimal) -> RefundConfirmation:
        if self.fail_refund:
            raise PaymentProviderError("gateway unavailable")
        self.refunds.append((order.order_number, amount))
        return RefundConfirmation(reference=f"RF-{order.order_number}", amount=amount)


@pytest.fixture
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def provider_factory():
    return FakePaymentProvider


@pytest.fixture
def failing_provider() -> FakePaymentProvider:
    return FakePaymentProvider(fail_refund=True, fail_initiate=True)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_tenant(db: AsyncSession):
    counter = {"n": 0}

    async def _make(
        features: Optional[dict[str, Any]] = None,
        plan_expires_at=None,
        with_plan: bool = True,
    ) -> Tenant:
        counter["n"] += 1
        plan_id = None
        if with_plan:
            plan = Plan(
                code=f"plan-{counter['n']}",
                name=f"Plan {counter['n']}",
                price=Decimal("10.00"),
                duration_months=1,
                trial_days=0,
                features=json.dumps(UNLIMITED_FEATURES if features is None else features),
            )
            db.add(plan)
            await db.flush()
            plan_id = plan.id
        tenant = Tenant(
            name=f"Store {counter['n']}",
            slug=f"store-{counter['n']}",
            plan_id=plan_id,
            plan_expires_at=plan_expires_at,
        )
        db.add(tenant)
        await db.commit()
        return tenant

    return _make


@pytest.fixture
def make_product(db: AsyncSession):
    counter = {"n": 0}

    async def _make(
        tenant: Tenant,
        price: str = "10.00",
        stock: int = 0,
        variants: Optional[list[tuple[str, int]]] = None,
        sale_price: Optional[str] = None,
        status: ProductStatus = ProductStatus.ACTIVE,
        name: Optional[str] = None,
    ) -> Product:
        counter["n"] += 1
        product = Product(
            tenant_id=tenant.id,
            name=name or f"Product {counter['n']}",
            slug=f"product-{counter['n']}",
            sku=f"SKU-{counter['n']}",
            price=Decimal(price),
            sale_price=Decimal(sale_price) if sale_price else None,
            stock_quantity=stock,
            status=status,
            variants=[],
        )
        db.add(product)
        await db.flush()
        for variant_name, variant_stock in variants or []:
            await StockReconciler.create_variant(
                db,
                tenant.id,
                product.id,
                stock_quantity=variant_stock,
                name=variant_name,
                sku=f"SKU-{counter['n']}-{variant_name}",
            )
        await db.commit()
        return product

    return _make


@pytest.fixture
def expired():
    return utcnow() - timedelta(days=1)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_headers():
    def _headers(tenant: Tenant) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(tenant.id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory, provider):
    from storefront.api.deps import get_payment_provider_resolver
    from storefront.core.db import get_db
    from storefront.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_provider_resolver] = lambda: (lambda method: provider)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def shipping_address() -> dict[str, Any]:
    return dict(SHIPPING_ADDRESS)


@pytest.fixture
def place_order(db: AsyncSession, provider: FakePaymentProvider):
    """Run a checkout for ``(product, variant_or_None, quantity)`` lines."""
    from storefront.models.models import PaymentMethod
    from storefront.services.checkout_service import CheckoutService

    async def _place(tenant: Tenant, lines, gateway: Optional[PaymentProvider] = None, **kwargs):
        items = [
            {
                "product_id": str(product.id),
                "variant_id": str(variant.id) if variant is not None else None,
                "quantity": quantity,
            }
            for product, variant, quantity in lines
        ]
        kwargs.setdefault("payment_method", PaymentMethod.CASH_ON_DELIVERY)
        kwargs.setdefault("billing_address", None)
        return await CheckoutService.checkout(
            db,
            tenant.id,
            items,
            shipping_address=dict(SHIPPING_ADDRESS),
            provider=gateway or provider,
            **kwargs,
        )

    return _place


def variant_named(product: Product, name: str):
    return next(v for v in product.variants if v.name == name)


@pytest.fixture
def variant_of():
    return variant_named
