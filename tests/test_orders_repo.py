"""Tests for order listing: filters, search, sorting and paging."""

from datetime import timedelta
from decimal import Decimal

from storefront.database.orders_repo import OrderRepository
from storefront.models.models import OrderStatus, PaymentStatus
from storefront.services.order_lifecycle import OrderLifecycle


async def _three_orders(tenant, product, place_order):
    orders = []
    for quantity in (1, 3, 2):
        orders.append((await place_order(tenant, [(product, None, quantity)])).order)
    return orders


class TestListOrders:
    async def test_newest_first_and_tenant_scoped(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        other = await make_tenant()
        product = await make_product(tenant, stock=20)
        first, second, third = await _three_orders(tenant, product, place_order)
        await place_order(other, [(await make_product(other, stock=5), None, 1)])

        orders, total = await OrderRepository.list_orders(db, tenant.id)

        assert total == 3
        assert [o.id for o in orders] == [third.id, second.id, first.id]

    async def test_status_filters(self, db, make_tenant, make_product, place_order, provider):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=20)
        first, second, _ = await _three_orders(tenant, product, place_order)
        await OrderLifecycle.cancel(db, first, "customer request", provider=provider)
        await OrderLifecycle.update_payment_status(db, second, PaymentStatus.PAID, transaction_id="TX-1")

        cancelled, cancelled_total = await OrderRepository.list_orders(db, tenant.id, status=OrderStatus.CANCELLED)
        paid, paid_total = await OrderRepository.list_orders(db, tenant.id, payment_status=PaymentStatus.PAID)

        assert (cancelled_total, [o.id for o in cancelled]) == (1, [first.id])
        assert (paid_total, [o.id for o in paid]) == (1, [second.id])

    async def test_search(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=20)
        first, _, _ = await _three_orders(tenant, product, place_order)

        by_number, number_total = await OrderRepository.list_orders(db, tenant.id, search=first.order_number)
        by_email, email_total = await OrderRepository.list_orders(db, tenant.id, search="JANE@EXAMPLE")
        nothing, nothing_total = await OrderRepository.list_orders(db, tenant.id, search="nobody")

        assert (number_total, [o.id for o in by_number]) == (1, [first.id])
        assert email_total == 3
        assert (nothing_total, nothing) == (0, [])

    async def test_sort_and_pages(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=20)
        await _three_orders(tenant, product, place_order)

        cheapest_first, _ = await OrderRepository.list_orders(db, tenant.id, sort="total")
        second_page, total = await OrderRepository.list_orders(db, tenant.id, page=2, page_size=2, sort="-total")

        assert [o.total_amount for o in cheapest_first] == [Decimal("10"), Decimal("20"), Decimal("30")]
        assert total == 3
        assert [o.total_amount for o in second_page] == [Decimal("10")]

    async def test_date_range(self, db, make_tenant, make_product, place_order):
        tenant = await make_tenant()
        product = await make_product(tenant, stock=20)
        orders = await _three_orders(tenant, product, place_order)
        created = orders[1].created_date

        later, total = await OrderRepository.list_orders(db, tenant.id, start_date=created)
        none_yet, none_total = await OrderRepository.list_orders(
            db, tenant.id, end_date=orders[0].created_date - timedelta(seconds=1)
        )

        assert total == 2
        assert {o.id for o in later} == {orders[1].id, orders[2].id}
        assert (none_total, none_yet) == (0, [])
